import logging
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..appointments import (
    APPOINTMENT_FIELDS,
    AppointmentError,
    appointment_alerts,
    appointment_logs,
    appointment_stats,
    clone_appointment,
    create_appointment,
    delete_appointment,
    log_appointment,
    sad_blockers,
    set_status,
    t1_errors,
)
from ..database import get_db
from ..deps import current_user, require_admin, require_user
from ..models import Appointment, AppointmentLog, T1Record, User
from ..schemas import (
    AppointmentComment,
    AppointmentCreate,
    AppointmentDetail,
    AppointmentLogRead,
    AppointmentPage,
    AppointmentRead,
    AppointmentStats,
    AppointmentStatusUpdate,
)
from ..utils import normalize_appointment_status

logger = logging.getLogger(__name__)

router = APIRouter()


def appointment_read(appointment: Appointment) -> AppointmentRead:
    read = AppointmentRead.model_validate(appointment)
    read.alerts = appointment_alerts(appointment)
    return read


def get_appointment_or_404(db: Session, appointment_id: int) -> Appointment:
    appointment = db.get(Appointment, appointment_id)
    if not appointment:
        raise HTTPException(status_code=404, detail="Appointment not found")
    return appointment


def _check_sads(db: Session, sad_nos: List[str]) -> None:
    missing, completed = sad_blockers(db, sad_nos)
    if missing:
        raise HTTPException(
            status_code=422,
            detail=f"SAD(s) {', '.join(missing)} must be registered before booking",
        )
    if completed:
        raise HTTPException(
            status_code=409,
            detail=f"SAD(s) {', '.join(completed)} are Completed and cannot be used",
        )


@router.get("/appointments", response_model=AppointmentPage)
def list_appointments(
    q: Optional[str] = Query(None, description="Appointment, weighbridge, agent, truck or driver substring"),
    status: Optional[str] = Query(None),
    pickup_date: Optional[date] = Query(None),
    sad_no: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
) -> AppointmentPage:
    query = db.query(Appointment)
    if q:
        pattern = f"%{q.strip()}%"
        query = query.filter(
            or_(
                Appointment.appointment_number.ilike(pattern),
                Appointment.weighbridge_number.ilike(pattern),
                Appointment.agent_name.ilike(pattern),
                Appointment.truck_number.ilike(pattern),
                Appointment.driver_name.ilike(pattern),
            )
        )
    if status:
        try:
            query = query.filter(Appointment.status == normalize_appointment_status(status))
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
    if pickup_date:
        query = query.filter(Appointment.pickup_date == pickup_date)
    if sad_no:
        carrying = db.query(T1Record.appointment_id).filter(T1Record.sad_no == sad_no.strip())
        query = query.filter(Appointment.id.in_(carrying))

    total = query.count()
    appointments = (
        query.order_by(Appointment.created_at.desc(), Appointment.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return AppointmentPage(items=[appointment_read(row) for row in appointments], total=total)


@router.get("/appointments/stats", response_model=AppointmentStats)
def get_appointment_stats(db: Session = Depends(get_db)) -> AppointmentStats:
    return AppointmentStats(**appointment_stats(db))


@router.post("/appointments", response_model=AppointmentRead, status_code=201)
def book_appointment(
    payload: AppointmentCreate,
    db: Session = Depends(get_db),
    user: Optional[User] = Depends(current_user),
) -> AppointmentRead:
    """Book a pickup; every T1 SAD must be registered and still open."""
    errors = t1_errors(payload.consolidated, payload.t1s)
    if errors:
        raise HTTPException(status_code=422, detail={"message": "Invalid T1 records", "errors": errors})
    _check_sads(db, [t1.sad_no for t1 in payload.t1s])

    fields = payload.model_dump(include=set(APPOINTMENT_FIELDS))
    t1s = [t1.model_dump() for t1 in payload.t1s]
    try:
        appointment = create_appointment(db, fields, t1s, user.id if user else None)
    except AppointmentError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return appointment_read(appointment)


@router.get("/appointments/{appointment_id}", response_model=AppointmentDetail)
def get_appointment(appointment_id: int, db: Session = Depends(get_db)) -> AppointmentDetail:
    appointment = get_appointment_or_404(db, appointment_id)
    logs = appointment_logs(db, appointment.id)
    return AppointmentDetail(
        appointment=appointment_read(appointment),
        logs=[AppointmentLogRead.model_validate(entry) for entry in logs],
    )


@router.patch("/appointments/{appointment_id}/status", response_model=AppointmentRead)
def update_appointment_status(
    appointment_id: int,
    payload: AppointmentStatusUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
) -> AppointmentRead:
    appointment = get_appointment_or_404(db, appointment_id)
    set_status(db, appointment, payload.status, admin.id)
    db.refresh(appointment)
    return appointment_read(appointment)


@router.post("/appointments/{appointment_id}/comments", response_model=AppointmentLogRead, status_code=201)
def comment_on_appointment(
    appointment_id: int,
    payload: AppointmentComment,
    db: Session = Depends(get_db),
    user: User = Depends(require_user),
) -> AppointmentLog:
    appointment = get_appointment_or_404(db, appointment_id)
    entry = log_appointment(db, appointment.id, "comment", user.id, message=payload.message)
    db.commit()
    db.refresh(entry)
    return entry


@router.post("/appointments/{appointment_id}/clone", response_model=AppointmentRead, status_code=201)
def clone_booking(
    appointment_id: int,
    db: Session = Depends(get_db),
    user: Optional[User] = Depends(current_user),
) -> AppointmentRead:
    source = get_appointment_or_404(db, appointment_id)
    _check_sads(db, [t1.sad_no for t1 in source.t1_records])
    try:
        copy = clone_appointment(db, source, user.id if user else None)
    except AppointmentError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return appointment_read(copy)


@router.delete("/appointments/{appointment_id}", status_code=204)
def remove_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
) -> Response:
    appointment = get_appointment_or_404(db, appointment_id)
    delete_appointment(db, appointment, admin.id)
    return Response(status_code=204)
