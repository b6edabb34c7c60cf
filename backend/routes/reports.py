from datetime import date, datetime, timedelta
from typing import List, Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response, StreamingResponse
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..audit import generated_reports, record_report
from ..database import get_db
from ..deletions import not_pending_deletion
from ..deps import current_user
from ..exports import (
    OUTGATE_COLUMNS,
    TICKET_COLUMNS,
    build_table_pdf,
    project_rows,
    rows_to_csv,
)
from ..models import Outgate, SadDeclaration, Ticket, User
from ..reconciliation import sad_dashboard_stats
from ..schemas import ReportGeneratedRead, ReportSummary, SadStats
from ..utils import day_bounds, normalize_ticket_status
from .outgate import csv_response
from .sads import with_live_totals

router = APIRouter()

DEFAULT_RANGE_DAYS = 7


def _resolve_range(date_from: Optional[date], date_to: Optional[date]) -> Tuple[date, date]:
    # Default to the last 7 days if no dates provided
    end = date_to or datetime.utcnow().date()
    start = date_from or end - timedelta(days=DEFAULT_RANGE_DAYS)
    if start > end:
        raise HTTPException(status_code=422, detail="date_from must not be after date_to")
    return start, end


def _ticket_query(
    db: Session,
    start: date,
    end: date,
    status: Optional[str] = None,
    sad_no: Optional[str] = None,
):
    lower, upper = day_bounds(start, end)
    query = db.query(Ticket).filter(
        Ticket.date >= lower,
        Ticket.date < upper,
        not_pending_deletion("tickets", Ticket.id),
    )
    if status:
        try:
            query = query.filter(Ticket.status == normalize_ticket_status(status))
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
    if sad_no:
        query = query.filter(Ticket.sad_no == sad_no.strip())
    return query


def _outgate_query(db: Session, start: date, end: date, sad_no: Optional[str] = None):
    lower, upper = day_bounds(start, end)
    query = db.query(Outgate).filter(Outgate.created_at >= lower, Outgate.created_at < upper)
    if sad_no:
        query = query.filter(Outgate.sad_no == sad_no.strip())
    return query


@router.get("/reports/summary", response_model=ReportSummary)
def report_summary(
    date_from: Optional[date] = Query(None, description="YYYY-MM-DD"),
    date_to: Optional[date] = Query(None, description="YYYY-MM-DD"),
    db: Session = Depends(get_db),
) -> ReportSummary:
    """Ticket and exit totals for a date range plus the SAD dashboard figures."""
    start, end = _resolve_range(date_from, date_to)
    tickets = _ticket_query(db, start, end)

    total, gross, net = tickets.with_entities(
        func.count(Ticket.id),
        func.coalesce(func.sum(Ticket.gross), 0.0),
        func.coalesce(func.sum(Ticket.net), 0.0),
    ).one()
    pending = tickets.filter(Ticket.status == "Pending").count()
    exited = tickets.filter(Ticket.status == "Exited").count()
    manual = tickets.filter(Ticket.manual.is_(True)).count()

    exits = _outgate_query(db, start, end)
    exit_count, exit_net = exits.with_entities(
        func.count(Outgate.id),
        func.coalesce(func.sum(Outgate.net), 0.0),
    ).one()

    sad_stats = sad_dashboard_stats(with_live_totals(db, db.query(SadDeclaration).all()))

    return ReportSummary(
        date_range={"from": start.isoformat(), "to": end.isoformat()},
        total_tickets=total,
        pending=pending,
        exited=exited,
        manual=manual,
        total_gross=float(gross),
        total_net=float(net),
        exits_confirmed=exit_count,
        exited_net=float(exit_net),
        sad=SadStats(**sad_stats),
    )


@router.get("/reports/tickets.csv")
def tickets_csv(
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    status: Optional[str] = Query(None),
    sad_no: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    user: Optional[User] = Depends(current_user),
) -> StreamingResponse:
    start, end = _resolve_range(date_from, date_to)
    records = _ticket_query(db, start, end, status, sad_no).order_by(Ticket.date.asc(), Ticket.id.asc()).all()
    content = rows_to_csv(project_rows(records, TICKET_COLUMNS), headers=list(TICKET_COLUMNS))
    filename = f"tickets_{start:%Y%m%d}_{end:%Y%m%d}.csv"
    record_report(db, "tickets_csv", filename, user, {"from": start, "to": end, "status": status, "sad_no": sad_no})
    return csv_response(content, filename)


@router.get("/reports/tickets.pdf")
def tickets_pdf(
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    status: Optional[str] = Query(None),
    sad_no: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    user: Optional[User] = Depends(current_user),
) -> Response:
    start, end = _resolve_range(date_from, date_to)
    records = _ticket_query(db, start, end, status, sad_no).order_by(Ticket.date.asc(), Ticket.id.asc()).all()
    rows = project_rows(records, TICKET_COLUMNS)
    meta = [f"Period: {start.isoformat()} to {end.isoformat()}", f"Tickets: {len(rows)}"]
    if status:
        meta.append(f"Status: {normalize_ticket_status(status)}")
    if sad_no:
        meta.append(f"SAD: {sad_no.strip()}")
    pdf = build_table_pdf("Weighbridge Ticket Report", rows, meta_lines=meta, headers=list(TICKET_COLUMNS))
    filename = f"tickets_{start:%Y%m%d}_{end:%Y%m%d}.pdf"
    record_report(db, "tickets_pdf", filename, user, {"from": start, "to": end, "status": status, "sad_no": sad_no})
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/reports/outgate.csv")
def outgate_csv(
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    sad_no: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    user: Optional[User] = Depends(current_user),
) -> StreamingResponse:
    start, end = _resolve_range(date_from, date_to)
    records = _outgate_query(db, start, end, sad_no).order_by(Outgate.created_at.asc(), Outgate.id.asc()).all()
    content = rows_to_csv(project_rows(records, OUTGATE_COLUMNS), headers=list(OUTGATE_COLUMNS))
    filename = f"outgate_{start:%Y%m%d}_{end:%Y%m%d}.csv"
    record_report(db, "outgate_csv", filename, user, {"from": start, "to": end, "sad_no": sad_no})
    return csv_response(content, filename)


@router.get("/reports/generated", response_model=List[ReportGeneratedRead])
def list_generated_reports(
    report_type: Optional[str] = Query(None),
    limit: int = Query(200, ge=1, le=500),
    db: Session = Depends(get_db),
):
    return generated_reports(db, report_type=report_type, limit=limit)
