import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query as OrmQuery
from sqlalchemy.orm import Session

from ..database import get_db
from ..deletions import not_pending_deletion
from ..exports import OUTGATE_COLUMNS, TICKET_COLUMNS, project_rows, rows_to_csv
from ..models import Outgate, Ticket
from ..notifications import notify_ticket_change
from ..schemas import OutgateConfirmRequest, OutgatePage, OutgateRead, TicketPage
from ..utils import compute_weights, day_bounds
from .tickets import ensure_not_pending_deletion, get_ticket_or_404, ticket_read

logger = logging.getLogger(__name__)

router = APIRouter()


def _pending_query(
    db: Session,
    q: Optional[str],
    sad_no: Optional[str],
    date_from: Optional[date],
    date_to: Optional[date],
) -> OrmQuery:
    query = db.query(Ticket).filter(
        Ticket.status == "Pending",
        not_pending_deletion("tickets", Ticket.id),
    )
    if q:
        pattern = f"%{q.strip()}%"
        query = query.filter(
            or_(
                Ticket.ticket_no.ilike(pattern),
                Ticket.truck_no.ilike(pattern),
                Ticket.container_no.ilike(pattern),
            )
        )
    if sad_no:
        query = query.filter(Ticket.sad_no == sad_no.strip())
    start, end = day_bounds(date_from, date_to)
    if start:
        query = query.filter(Ticket.date >= start)
    if end:
        query = query.filter(Ticket.date < end)
    return query.order_by(Ticket.date.desc(), Ticket.id.desc())


def _confirmed_query(
    db: Session,
    q: Optional[str],
    sad_no: Optional[str],
    date_from: Optional[date],
    date_to: Optional[date],
) -> OrmQuery:
    query = db.query(Outgate)
    if q:
        pattern = f"%{q.strip()}%"
        query = query.filter(
            or_(
                Outgate.ticket_no.ilike(pattern),
                Outgate.vehicle_number.ilike(pattern),
                Outgate.container_id.ilike(pattern),
                Outgate.driver.ilike(pattern),
            )
        )
    if sad_no:
        query = query.filter(Outgate.sad_no == sad_no.strip())
    start, end = day_bounds(date_from, date_to)
    if start:
        query = query.filter(Outgate.created_at >= start)
    if end:
        query = query.filter(Outgate.created_at < end)
    return query.order_by(Outgate.created_at.desc(), Outgate.id.desc())


def csv_response(content: str, filename: str) -> StreamingResponse:
    return StreamingResponse(
        iter([content]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/outgate/pending", response_model=TicketPage)
def pending_exits(
    q: Optional[str] = Query(None),
    sad_no: Optional[str] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
) -> TicketPage:
    query = _pending_query(db, q, sad_no, date_from, date_to)
    total = query.count()
    return TicketPage(
        items=[ticket_read(ticket) for ticket in query.offset(offset).limit(limit).all()],
        total=total,
    )


@router.get("/outgate/pending.csv")
def export_pending_exits(
    q: Optional[str] = Query(None),
    sad_no: Optional[str] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    db: Session = Depends(get_db),
) -> StreamingResponse:
    rows = project_rows(_pending_query(db, q, sad_no, date_from, date_to).all(), TICKET_COLUMNS)
    return csv_response(rows_to_csv(rows, headers=list(TICKET_COLUMNS)), "pending_exits.csv")


@router.post("/outgate/confirm", response_model=OutgateRead, status_code=201)
def confirm_exit(payload: OutgateConfirmRequest, db: Session = Depends(get_db)) -> Outgate:
    """Confirm a truck leaving: copy the ticket into outgate and mark it Exited."""
    ticket = get_ticket_or_404(db, payload.ticket_id)
    ensure_not_pending_deletion(db, ticket)

    already = db.query(Outgate.id).filter(Outgate.ticket_id == ticket.id).first()
    if already:
        raise HTTPException(status_code=409, detail=f"Ticket {ticket.ticket_no} has already exited")

    weights = compute_weights(ticket.gross, ticket.tare, ticket.net)
    driver = (payload.driver or "").strip() or ticket.driver
    exit_row = Outgate(
        ticket_id=ticket.id,
        ticket_no=ticket.ticket_no,
        vehicle_number=ticket.truck_no,
        container_id=ticket.container_no,
        sad_no=ticket.sad_no,
        driver=driver,
        gross=weights.gross,
        tare=weights.tare,
        net=weights.net,
        date=ticket.date,
        file_url=ticket.file_url,
        file_name=ticket.file_name,
    )
    previous_status = ticket.status
    ticket.status = "Exited"
    db.add(exit_row)
    try:
        db.commit()
    except IntegrityError:
        # another gate confirmed the same ticket first
        db.rollback()
        raise HTTPException(status_code=409, detail=f"Ticket {ticket.ticket_no} has already exited")

    logger.info("Confirmed exit of %s (ticket %s)", exit_row.vehicle_number, exit_row.ticket_no)
    notify_ticket_change(db, ticket, previous_status=previous_status)
    db.refresh(exit_row)
    return exit_row


@router.get("/outgate", response_model=OutgatePage)
def confirmed_exits(
    q: Optional[str] = Query(None),
    sad_no: Optional[str] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
) -> OutgatePage:
    query = _confirmed_query(db, q, sad_no, date_from, date_to)
    total = query.count()
    items = [OutgateRead.model_validate(row) for row in query.offset(offset).limit(limit).all()]
    return OutgatePage(items=items, total=total)


@router.get("/outgate/export.csv")
def export_confirmed_exits(
    q: Optional[str] = Query(None),
    sad_no: Optional[str] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    db: Session = Depends(get_db),
) -> StreamingResponse:
    rows = project_rows(_confirmed_query(db, q, sad_no, date_from, date_to).all(), OUTGATE_COLUMNS)
    return csv_response(rows_to_csv(rows, headers=list(OUTGATE_COLUMNS)), "confirmed_exits.csv")


@router.get("/outgate/{outgate_id}", response_model=OutgateRead)
def get_exit(outgate_id: int, db: Session = Depends(get_db)) -> Outgate:
    exit_row = db.get(Outgate, outgate_id)
    if not exit_row:
        raise HTTPException(status_code=404, detail="Exit record not found")
    return exit_row
