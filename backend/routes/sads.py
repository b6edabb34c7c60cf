"""
SAD (customs declaration) endpoints.

Recorded weights are always summed live from tickets; the persisted
``total_recorded_weight`` is only a snapshot refreshed by /recalculate.
"""

import logging
from collections import defaultdict
from dataclasses import asdict
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import Response, StreamingResponse
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..activity import recent_activity, record_activity
from ..appointments import close_for_sad
from ..audit import record_report
from ..database import get_db
from ..deletions import not_pending_deletion
from ..deps import current_user
from ..exports import TICKET_COLUMNS, build_sad_report_pdf, project_rows, rows_to_csv
from ..models import Outgate, SadDeclaration, T1Record, Ticket, User
from ..reconciliation import (
    SadTotals,
    classify_discrepancy,
    detect_anomalies,
    is_discharge_complete,
    parse_sad_query,
    sad_dashboard_stats,
    sad_totals,
)
from ..schemas import (
    ActivityRead,
    AnomalyReportRead,
    DiscrepancyRead,
    SadCreate,
    SadDetail,
    SadPage,
    SadRead,
    SadRenameRequest,
    SadRenameResult,
    SadStats,
    SadStatusUpdate,
)
from ..storage import make_file_url, store_upload
from ..utils import REGIMES, normalize_regime, normalize_sad_status, to_number
from .tickets import ticket_read

logger = logging.getLogger(__name__)

router = APIRouter()

SORT_CHOICES = ("created_at", "sad_no", "discrepancy")

# Order matters: a failed step reverts the ones before it.
RENAME_STEPS = (
    ("sad_declarations", SadDeclaration),
    ("tickets", Ticket),
    ("outgate", Outgate),
    ("t1_records", T1Record),
)


def live_totals(db: Session, sad_nos: Optional[Iterable[str]] = None) -> Dict[str, SadTotals]:
    query = db.query(Ticket.sad_no, Ticket.ticket_no, Ticket.net).filter(
        Ticket.sad_no.isnot(None),
        not_pending_deletion("tickets", Ticket.id),
    )
    if sad_nos is not None:
        query = query.filter(Ticket.sad_no.in_(list(sad_nos)))
    grouped = defaultdict(list)
    for row in query.all():
        grouped[row.sad_no].append(row)
    return {sad_no: sad_totals(rows) for sad_no, rows in grouped.items()}


def sad_read(sad: SadDeclaration, totals: Optional[SadTotals]) -> SadRead:
    recorded = totals.total_recorded_weight if totals else 0.0
    declared = to_number(sad.declared_weight)
    return SadRead.model_validate(sad).model_copy(
        update={
            "regime_label": REGIMES.get(sad.regime) if sad.regime else None,
            "total_recorded_weight": recorded,
            "ticket_count": totals.ticket_count if totals else 0,
            "discrepancy": recorded - declared,
            "discharge_complete": is_discharge_complete(declared, recorded),
        }
    )


def with_live_totals(db: Session, sads: List[SadDeclaration]) -> List[dict]:
    totals = live_totals(db, [sad.sad_no for sad in sads])
    return [
        {
            "sad_no": sad.sad_no,
            "status": sad.status,
            "declared_weight": sad.declared_weight,
            "total_recorded_weight": totals[sad.sad_no].total_recorded_weight if sad.sad_no in totals else 0.0,
        }
        for sad in sads
    ]


def get_sad_or_404(db: Session, sad_no: str) -> SadDeclaration:
    sad = db.query(SadDeclaration).filter(SadDeclaration.sad_no == sad_no.strip()).one_or_none()
    if not sad:
        raise HTTPException(status_code=404, detail=f"SAD {sad_no} not found")
    return sad


def _sad_tickets(db: Session, sad_no: str) -> List[Ticket]:
    return (
        db.query(Ticket)
        .filter(Ticket.sad_no == sad_no, not_pending_deletion("tickets", Ticket.id))
        .order_by(Ticket.date.desc(), Ticket.id.desc())
        .all()
    )


def _actor(user: Optional[User]) -> Optional[int]:
    return user.id if user else None


@router.get("/sads", response_model=SadPage)
def list_sads(
    status: Optional[str] = Query(None),
    sad_no: Optional[str] = Query(None, description="SAD number substring"),
    regime: Optional[str] = Query(None),
    q: Optional[str] = Query(None, description="Free text, e.g. 'completed import 1234'"),
    created_by: Optional[int] = Query(None),
    sort: str = Query("created_at"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
) -> SadPage:
    if sort not in SORT_CHOICES:
        raise HTTPException(status_code=422, detail=f"sort must be one of {', '.join(SORT_CHOICES)}")

    filters = parse_sad_query(q)
    try:
        if status:
            filters["status"] = normalize_sad_status(status)
        if regime:
            filters["regime"] = normalize_regime(regime)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    if sad_no:
        filters["sad_no"] = sad_no.strip()

    query = db.query(SadDeclaration)
    if filters.get("status"):
        query = query.filter(SadDeclaration.status == filters["status"])
    if filters.get("regime"):
        query = query.filter(SadDeclaration.regime == filters["regime"])
    if filters.get("sad_no"):
        query = query.filter(SadDeclaration.sad_no.ilike(f"%{filters['sad_no']}%"))
    if created_by is not None:
        query = query.filter(SadDeclaration.created_by == created_by)

    total = query.count()
    if sort == "discrepancy":
        # needs the live totals of every match before paging
        sads = query.all()
        totals = live_totals(db, [sad.sad_no for sad in sads])
        rows = sorted(
            (sad_read(sad, totals.get(sad.sad_no)) for sad in sads),
            key=lambda row: abs(row.discrepancy),
            reverse=True,
        )
        return SadPage(items=rows[offset : offset + limit], total=total)

    order = SadDeclaration.sad_no.asc() if sort == "sad_no" else SadDeclaration.created_at.desc()
    sads = query.order_by(order, SadDeclaration.id.desc()).offset(offset).limit(limit).all()
    totals = live_totals(db, [sad.sad_no for sad in sads])
    return SadPage(items=[sad_read(sad, totals.get(sad.sad_no)) for sad in sads], total=total)


@router.post("/sads", response_model=SadRead, status_code=201)
def create_sad(
    payload: SadCreate,
    db: Session = Depends(get_db),
    user: Optional[User] = Depends(current_user),
) -> SadRead:
    if db.query(SadDeclaration.id).filter(SadDeclaration.sad_no == payload.sad_no).first():
        raise HTTPException(status_code=409, detail=f"SAD {payload.sad_no} already exists")

    sad = SadDeclaration(
        sad_no=payload.sad_no,
        regime=payload.regime,
        declared_weight=payload.declared_weight,
        docs=[doc.model_dump() for doc in payload.docs],
        status="In Progress",
        created_by=_actor(user),
    )
    db.add(sad)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail=f"SAD {payload.sad_no} already exists")
    db.refresh(sad)

    record_activity(db, f"Created SAD {sad.sad_no}", {"sad_no": sad.sad_no, "user_id": _actor(user)})
    return sad_read(sad, live_totals(db, [sad.sad_no]).get(sad.sad_no))


@router.get("/sads/anomalies", response_model=AnomalyReportRead)
def sad_anomalies(db: Session = Depends(get_db)) -> AnomalyReportRead:
    report = detect_anomalies(with_live_totals(db, db.query(SadDeclaration).all()))
    return AnomalyReportRead.model_validate(asdict(report))


@router.get("/sads/stats", response_model=SadStats)
def sad_stats(db: Session = Depends(get_db)) -> SadStats:
    return SadStats(**sad_dashboard_stats(with_live_totals(db, db.query(SadDeclaration).all())))


@router.get("/sads/activity", response_model=List[ActivityRead])
def sad_activity(limit: int = Query(100, ge=1, le=100), db: Session = Depends(get_db)):
    return recent_activity(db, limit)


@router.get("/sads/{sad_no}", response_model=SadDetail)
def get_sad(sad_no: str, db: Session = Depends(get_db)) -> SadDetail:
    sad = get_sad_or_404(db, sad_no)
    tickets = _sad_tickets(db, sad.sad_no)
    totals = sad_totals(tickets)
    return SadDetail(
        sad=sad_read(sad, totals),
        tickets=[ticket_read(ticket) for ticket in tickets],
        manual_count=totals.manual_count,
        uploaded_count=totals.uploaded_count,
    )


@router.patch("/sads/{sad_no}/status", response_model=SadRead)
def update_sad_status(
    sad_no: str,
    payload: SadStatusUpdate,
    db: Session = Depends(get_db),
    user: Optional[User] = Depends(current_user),
) -> SadRead:
    sad = get_sad_or_404(db, sad_no)
    previous = sad.status
    sad.status = payload.status
    sad.manual_update = True
    if payload.status == "Completed":
        sad.completed_at = datetime.utcnow()
        sad.completed_by = _actor(user)
    elif previous == "Completed":
        sad.completed_at = None
        sad.completed_by = None
    db.commit()
    db.refresh(sad)

    record_activity(
        db,
        f"SAD {sad.sad_no} status {previous} -> {sad.status}",
        {"sad_no": sad.sad_no, "from": previous, "to": sad.status, "user_id": _actor(user)},
    )
    if sad.status == "Completed" and previous != "Completed":
        close_for_sad(db, sad.sad_no, _actor(user))
    return sad_read(sad, live_totals(db, [sad.sad_no]).get(sad.sad_no))


def _repoint(db: Session, model, old: str, new: str) -> int:
    updated = (
        db.query(model)
        .filter(model.sad_no == old)
        .update({model.sad_no: new}, synchronize_session=False)
    )
    db.commit()
    return updated


def _revert_rename(db: Session, old: str, new: str, steps: List[str]) -> bool:
    models = dict(RENAME_STEPS)
    for step in reversed(steps):
        try:
            _repoint(db, models[step], new, old)
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Could not revert %s during rename %s -> %s", step, old, new)
            return False
    return True


@router.post("/sads/{sad_no}/rename", response_model=SadRenameResult)
def rename_sad(
    sad_no: str,
    payload: SadRenameRequest,
    db: Session = Depends(get_db),
    user: Optional[User] = Depends(current_user),
) -> SadRenameResult:
    """Rename a SAD and re-point its tickets and exits.

    Each table is updated in its own commit. When a later step fails the
    completed steps are written back to the old number and the response
    (HTTP 500) says which steps ran and whether the revert succeeded.
    """
    sad = get_sad_or_404(db, sad_no)
    old, new = sad.sad_no, payload.new_sad_no
    if old == new:
        raise HTTPException(status_code=400, detail="New SAD number is the same as the current one")
    if db.query(SadDeclaration.id).filter(SadDeclaration.sad_no == new).first():
        raise HTTPException(status_code=409, detail=f"SAD {new} already exists")

    steps: List[str] = []
    for step, model in RENAME_STEPS:
        try:
            _repoint(db, model, old, new)
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Rename %s -> %s failed at %s", old, new, step)
            result = SadRenameResult(
                old_sad_no=old,
                new_sad_no=new,
                ok=False,
                steps_completed=steps,
                reverted=_revert_rename(db, old, new, steps),
                error=str(exc.orig if getattr(exc, "orig", None) else exc),
            )
            raise HTTPException(status_code=500, detail=result.model_dump())
        steps.append(step)

    record_activity(
        db,
        f"Renamed SAD {old} to {new}",
        {"from": old, "to": new, "user_id": _actor(user)},
    )
    return SadRenameResult(old_sad_no=old, new_sad_no=new, ok=True, steps_completed=steps)


@router.post("/sads/{sad_no}/recalculate", response_model=SadRead)
def recalculate_sad(sad_no: str, db: Session = Depends(get_db)) -> SadRead:
    sad = get_sad_or_404(db, sad_no)
    totals = sad_totals(_sad_tickets(db, sad.sad_no))
    sad.total_recorded_weight = totals.total_recorded_weight
    db.commit()
    db.refresh(sad)
    record_activity(
        db,
        f"Recalculated SAD {sad.sad_no}: {totals.total_recorded_weight:,.0f} kg",
        {"sad_no": sad.sad_no, "total": totals.total_recorded_weight},
    )
    return sad_read(sad, totals)


@router.post("/sads/{sad_no}/archive", response_model=SadRead)
def archive_sad(
    sad_no: str,
    db: Session = Depends(get_db),
    user: Optional[User] = Depends(current_user),
) -> SadRead:
    sad = get_sad_or_404(db, sad_no)
    sad.status = "Archived"
    db.commit()
    db.refresh(sad)
    record_activity(db, f"Archived SAD {sad.sad_no}", {"sad_no": sad.sad_no, "user_id": _actor(user)})
    return sad_read(sad, live_totals(db, [sad.sad_no]).get(sad.sad_no))


@router.get("/sads/{sad_no}/discrepancy", response_model=DiscrepancyRead)
def sad_discrepancy(sad_no: str, db: Session = Depends(get_db)) -> DiscrepancyRead:
    sad = get_sad_or_404(db, sad_no)
    totals = sad_totals(_sad_tickets(db, sad.sad_no))
    result = classify_discrepancy(sad.declared_weight, totals.total_recorded_weight)
    return DiscrepancyRead(sad_no=sad.sad_no, **asdict(result))


@router.post("/sads/{sad_no}/documents", response_model=SadRead)
async def upload_sad_documents(
    sad_no: str,
    files: List[UploadFile] = File(...),
    tags: Optional[str] = Form(None, description="Comma separated tags applied to every file"),
    db: Session = Depends(get_db),
) -> SadRead:
    sad = get_sad_or_404(db, sad_no)
    tag_list = [tag.strip() for tag in (tags or "").split(",") if tag.strip()]

    added = []
    for upload in files:
        path, name = await store_upload(upload, "sad_docs", sad.sad_no)
        added.append({"name": name, "path": path, "url": make_file_url(path), "tags": tag_list})

    # reassign so the JSON column is flagged dirty
    sad.docs = [*(sad.docs or []), *added]
    db.commit()
    db.refresh(sad)
    record_activity(
        db,
        f"Uploaded {len(added)} document(s) to SAD {sad.sad_no}",
        {"sad_no": sad.sad_no, "files": [doc["name"] for doc in added]},
    )
    return sad_read(sad, live_totals(db, [sad.sad_no]).get(sad.sad_no))


@router.get("/sads/{sad_no}/export.csv")
def export_sad_csv(
    sad_no: str,
    db: Session = Depends(get_db),
    user: Optional[User] = Depends(current_user),
) -> StreamingResponse:
    sad = get_sad_or_404(db, sad_no)
    rows = project_rows(_sad_tickets(db, sad.sad_no), TICKET_COLUMNS)
    content = rows_to_csv(rows, headers=list(TICKET_COLUMNS))
    filename = f"sad_{sad.sad_no}_tickets.csv"
    record_report(db, "sad_csv", filename, user, {"sad_no": sad.sad_no})
    return StreamingResponse(
        iter([content]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/sads/{sad_no}/report.pdf")
def sad_report_pdf(
    sad_no: str,
    db: Session = Depends(get_db),
    user: Optional[User] = Depends(current_user),
) -> Response:
    sad = get_sad_or_404(db, sad_no)
    pdf = build_sad_report_pdf(sad, _sad_tickets(db, sad.sad_no))
    filename = f"sad_{sad.sad_no}_report.pdf"
    record_report(db, "sad_pdf", filename, user, {"sad_no": sad.sad_no})
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
