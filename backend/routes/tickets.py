import logging
from datetime import date, datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..audit import AUDIT_ACTIONS, audit_entries, record_audit
from ..config import settings
from ..database import get_db
from ..deletions import (
    is_pending_deletion,
    not_pending_deletion,
    schedule_deletion,
    snapshot_record,
    undo_deletion,
)
from ..deps import current_user
from ..models import PendingDeletion, Ticket, User
from ..notifications import notify_ticket_change
from ..schemas import (
    AuditLogRead,
    NextTicketNumber,
    PendingDeletionRead,
    TicketCreate,
    TicketPage,
    TicketRead,
    TicketUpdate,
)
from ..storage import make_file_url, store_upload
from ..tares import record_tare
from ..utils import (
    Weights,
    compute_weights,
    day_bounds,
    is_manual_ticket_no,
    next_manual_ticket_no,
    normalize_ticket_status,
    out_of_range_fields,
    to_naive_utc,
    validate_weights,
)

logger = logging.getLogger(__name__)

router = APIRouter()

TICKET_NUMBER_ATTEMPTS = 5
# derived last when a partial update leaves one weight unknown
WEIGHT_FILL_ORDER = ("tare", "gross", "net")


def ticket_read(ticket: Ticket) -> TicketRead:
    read = TicketRead.model_validate(ticket)
    read.out_of_range = out_of_range_fields(Weights(ticket.gross, ticket.tare, ticket.net))
    return read


def get_ticket_or_404(db: Session, ticket_id: int) -> Ticket:
    ticket = db.get(Ticket, ticket_id)
    if not ticket:
        raise HTTPException(status_code=404, detail="Ticket not found")
    return ticket


def _weights_or_422(gross, tare, net) -> Weights:
    errors = validate_weights(gross, tare, net)
    if errors:
        raise HTTPException(status_code=422, detail={"message": "Invalid weights", "errors": errors})
    return compute_weights(gross, tare, net)


def _next_number(db: Session) -> str:
    rows = db.query(Ticket.ticket_no).filter(Ticket.ticket_no.like("M-%")).all()
    return next_manual_ticket_no(row[0] for row in rows)


@router.get("/tickets", response_model=TicketPage)
def list_tickets(
    status: Optional[str] = Query(None),
    sad_no: Optional[str] = Query(None),
    truck: Optional[str] = Query(None, description="Truck number substring"),
    q: Optional[str] = Query(None, description="Ticket, truck or SAD substring"),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    manual: Optional[bool] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
) -> TicketPage:
    query = db.query(Ticket).filter(not_pending_deletion("tickets", Ticket.id))

    if status:
        try:
            query = query.filter(Ticket.status == normalize_ticket_status(status))
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
    if sad_no:
        query = query.filter(Ticket.sad_no == sad_no.strip())
    if truck:
        query = query.filter(Ticket.truck_no.ilike(f"%{truck.strip()}%"))
    if q:
        pattern = f"%{q.strip()}%"
        query = query.filter(
            or_(
                Ticket.ticket_no.ilike(pattern),
                Ticket.truck_no.ilike(pattern),
                Ticket.sad_no.ilike(pattern),
            )
        )
    start, end = day_bounds(date_from, date_to)
    if start:
        query = query.filter(Ticket.date >= start)
    if end:
        query = query.filter(Ticket.date < end)
    if manual is not None:
        query = query.filter(Ticket.manual == manual)

    total = query.count()
    tickets = (
        query.order_by(Ticket.submitted_at.desc(), Ticket.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return TicketPage(items=[ticket_read(ticket) for ticket in tickets], total=total)


@router.get("/tickets/next-number", response_model=NextTicketNumber)
def next_ticket_number(db: Session = Depends(get_db)) -> NextTicketNumber:
    return NextTicketNumber(next_ticket_no=_next_number(db))


@router.get("/tickets/{ticket_id}", response_model=TicketRead)
def get_ticket(ticket_id: int, db: Session = Depends(get_db)) -> TicketRead:
    return ticket_read(get_ticket_or_404(db, ticket_id))


@router.post("/tickets", response_model=TicketRead, status_code=201)
def create_ticket(
    payload: TicketCreate,
    db: Session = Depends(get_db),
    user: Optional[User] = Depends(current_user),
) -> TicketRead:
    """Record a weighbridge ticket; manual entries get the next M-NNNN number."""
    weights = _weights_or_422(payload.gross, payload.tare, payload.net)

    explicit_no = payload.ticket_no
    if explicit_no and db.query(Ticket.id).filter(Ticket.ticket_no == explicit_no).first():
        raise HTTPException(status_code=409, detail=f"Ticket {explicit_no} already exists")

    fields = payload.model_dump(exclude={"ticket_no", "gross", "tare", "net", "date", "save_tare"})
    entry_date = to_naive_utc(payload.date) if payload.date else datetime.utcnow()

    ticket: Optional[Ticket] = None
    for _ in range(TICKET_NUMBER_ATTEMPTS):
        ticket_no = explicit_no or _next_number(db)
        ticket = Ticket(
            **fields,
            ticket_no=ticket_no,
            gross=weights.gross,
            tare=weights.tare,
            net=weights.net,
            status="Pending",
            manual=is_manual_ticket_no(ticket_no),
            operator_id=user.id if user else None,
            date=entry_date,
            submitted_at=datetime.utcnow(),
        )
        db.add(ticket)
        try:
            db.commit()
            break
        except IntegrityError:
            db.rollback()
            ticket = None
            if explicit_no:
                raise HTTPException(status_code=409, detail=f"Ticket {explicit_no} already exists")
            logger.warning("Ticket number %s was taken concurrently, retrying", ticket_no)
    if ticket is None:
        raise HTTPException(status_code=409, detail="Could not allocate a ticket number")

    db.refresh(ticket)
    logger.info("Created ticket %s for truck %s", ticket.ticket_no, ticket.truck_no)

    if payload.save_tare and weights.tare is not None:
        try:
            record_tare(db, ticket.truck_no, weights.tare)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Could not save tare for %s", ticket.truck_no)

    record_audit(db, "create", ticket, user, after=snapshot_record(ticket))
    notify_ticket_change(db, ticket)
    db.refresh(ticket)
    return ticket_read(ticket)


@router.patch("/tickets/{ticket_id}", response_model=TicketRead)
def update_ticket(
    ticket_id: int,
    payload: TicketUpdate,
    db: Session = Depends(get_db),
    user: Optional[User] = Depends(current_user),
) -> TicketRead:
    ticket = get_ticket_or_404(db, ticket_id)
    before = snapshot_record(ticket)
    changes = payload.model_dump(exclude_unset=True)
    previous_status = ticket.status

    given = {key: changes.pop(key) for key in ("gross", "tare", "net") if key in changes}
    if given:
        for key in WEIGHT_FILL_ORDER:
            if len([value for value in given.values() if value is not None]) >= 2:
                break
            if given.get(key) is None:
                given[key] = getattr(ticket, key)
        weights = _weights_or_422(given.get("gross"), given.get("tare"), given.get("net"))
        ticket.gross, ticket.tare, ticket.net = weights.gross, weights.tare, weights.net

    for key, value in changes.items():
        if value is None and key in ("truck_no", "sad_no", "status", "flagged"):
            continue
        setattr(ticket, key, value.strip() if isinstance(value, str) else value)

    db.commit()
    db.refresh(ticket)
    record_audit(db, "update", ticket, user, before=before, after=snapshot_record(ticket))
    if ticket.status != previous_status:
        notify_ticket_change(db, ticket, previous_status=previous_status)
        db.refresh(ticket)
    return ticket_read(ticket)


@router.post("/tickets/{ticket_id}/attachment", response_model=TicketRead)
async def upload_ticket_attachment(
    ticket_id: int,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
) -> TicketRead:
    ticket = get_ticket_or_404(db, ticket_id)
    path, name = await store_upload(file, "tickets", ticket.ticket_no)
    ticket.file_url = make_file_url(path)
    ticket.file_name = name
    db.commit()
    db.refresh(ticket)
    return ticket_read(ticket)


@router.delete("/tickets/{ticket_id}", response_model=PendingDeletionRead, status_code=202)
def delete_ticket(
    ticket_id: int,
    db: Session = Depends(get_db),
    user: Optional[User] = Depends(current_user),
) -> PendingDeletion:
    """Schedule the ticket for deletion; undo via POST /deletions/{id}/undo."""
    ticket = get_ticket_or_404(db, ticket_id)
    if ticket.outgate is not None:
        raise HTTPException(status_code=409, detail="Ticket has an exit record and cannot be deleted")
    pending = schedule_deletion(
        db,
        "tickets",
        ticket,
        settings.undo_window_seconds,
        requested_by=user.id if user else None,
    )
    record_audit(db, "delete", ticket, user, before=pending.snapshot)
    return pending


@router.post("/deletions/{pending_id}/undo", response_model=PendingDeletionRead)
def undo_delete(pending_id: int, db: Session = Depends(get_db)) -> PendingDeletion:
    pending = undo_deletion(db, pending_id)
    if pending is None:
        raise HTTPException(status_code=404, detail="Nothing to undo; the deletion already ran")
    return pending


def ensure_not_pending_deletion(db: Session, ticket: Ticket) -> None:
    if is_pending_deletion(db, "tickets", ticket.id):
        raise HTTPException(status_code=409, detail="Ticket is scheduled for deletion")


@router.get("/audit-logs", response_model=List[AuditLogRead])
def list_audit_logs(
    ticket_id: Optional[int] = Query(None),
    action: Optional[str] = Query(None),
    limit: int = Query(200, ge=1, le=500),
    db: Session = Depends(get_db),
):
    """Ticket create/update/delete history, newest first."""
    if action and action not in AUDIT_ACTIONS:
        raise HTTPException(status_code=422, detail=f"Invalid audit action '{action}'")
    return audit_entries(db, ticket_id=ticket_id, action=action, limit=limit)
