"""
Truck pickup appointments.

An appointment books a truck and driver to collect cargo covered by one or
more T1 records (SAD number plus packing). Every change is written to
``appointment_logs``; completing a SAD closes the appointments that carry it.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import extract, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .deletions import snapshot_record
from .models import Appointment, AppointmentLog, SadDeclaration, T1Record
from .utils import appointment_numbers

logger = logging.getLogger(__name__)

NUMBER_ATTEMPTS = 6
LOG_ACTIONS = ("create", "status_change", "comment", "clone", "delete", "sad_auto_close")
APPOINTMENT_FIELDS = (
    "agent_tin",
    "agent_name",
    "warehouse_location",
    "pickup_date",
    "consolidated",
    "truck_number",
    "driver_name",
    "driver_license_no",
    "total_documented_weight",
    "regime",
)


class AppointmentError(Exception):
    """Raised when appointment numbers cannot be allocated."""


def t1_errors(consolidated: str, t1s: Sequence[Any]) -> List[str]:
    """Return the problems with a T1 list; empty when it can be booked."""
    if not t1s:
        return ["At least one T1 record is required"]
    errors: List[str] = []
    if consolidated == "N" and len(t1s) > 1:
        errors.append("Consolidated = N allows only one T1 record")
    seen = set()
    for t1 in t1s:
        if t1.packing_type == "container" and not t1.container_no:
            errors.append(f"Container No required for container packing (SAD {t1.sad_no})")
        if consolidated == "Y":
            if t1.packing_type in seen:
                errors.append(f'Packing type "{t1.packing_type}" already added')
            seen.add(t1.packing_type)
    return errors


def sad_blockers(db: Session, sad_nos: Iterable[str]) -> Tuple[List[str], List[str]]:
    """Split *sad_nos* into (not registered, already Completed)."""
    wanted = sorted(set(sad_nos))
    statuses = dict(
        db.query(SadDeclaration.sad_no, SadDeclaration.status)
        .filter(SadDeclaration.sad_no.in_(wanted))
        .all()
    )
    missing = [sad_no for sad_no in wanted if sad_no not in statuses]
    completed = [sad_no for sad_no in wanted if statuses.get(sad_no) == "Completed"]
    return missing, completed


def is_overdue(appointment: Appointment, today: Optional[date] = None) -> bool:
    today = today or datetime.utcnow().date()
    return appointment.status == "Posted" and appointment.pickup_date < today


def appointment_alerts(appointment: Appointment, today: Optional[date] = None) -> List[str]:
    return ["pickup_overdue"] if is_overdue(appointment, today) else []


def _allocate_numbers(db: Session, pickup: date, attempt: int) -> Tuple[str, str]:
    on_day = db.query(func.count(Appointment.id)).filter(Appointment.pickup_date == pickup).scalar() or 0
    in_month = (
        db.query(func.count(Appointment.id))
        .filter(
            extract("year", Appointment.pickup_date) == pickup.year,
            extract("month", Appointment.pickup_date) == pickup.month,
        )
        .scalar()
        or 0
    )
    return appointment_numbers(pickup, on_day + 1 + attempt, in_month + 1 + attempt)


def log_appointment(
    db: Session,
    appointment_id: int,
    action: str,
    changed_by: Optional[int] = None,
    message: Optional[str] = None,
    before: Optional[Dict[str, Any]] = None,
    after: Optional[Dict[str, Any]] = None,
) -> AppointmentLog:
    """Stage a log entry; the caller commits it with the change it describes."""
    if action not in LOG_ACTIONS:
        raise ValueError(f"Unknown appointment log action {action!r}")
    entry = AppointmentLog(
        appointment_id=appointment_id,
        changed_by=changed_by,
        action=action,
        message=message,
        before=before,
        after=after,
    )
    db.add(entry)
    return entry


def create_appointment(
    db: Session,
    fields: Dict[str, Any],
    t1s: Sequence[Dict[str, Any]],
    changed_by: Optional[int] = None,
    action: str = "create",
    message: Optional[str] = None,
    before: Optional[Dict[str, Any]] = None,
) -> Appointment:
    """Insert a Posted appointment with fresh numbers, retrying when a number is taken."""
    pickup = fields["pickup_date"]
    for attempt in range(NUMBER_ATTEMPTS):
        appointment_no, weighbridge_no = _allocate_numbers(db, pickup, attempt)
        appointment = Appointment(
            **fields,
            appointment_number=appointment_no,
            weighbridge_number=weighbridge_no,
            total_t1s=len(t1s),
            status="Posted",
            created_by=changed_by,
            t1_records=[T1Record(**t1) for t1 in t1s],
        )
        db.add(appointment)
        try:
            db.flush()
            log_appointment(
                db,
                appointment.id,
                action,
                changed_by,
                message=message or f"Created appointment {appointment_no}",
                before=before,
                after=snapshot_record(appointment),
            )
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.warning("Appointment number %s was taken concurrently, retrying", appointment_no)
            continue
        db.refresh(appointment)
        logger.info("Created appointment %s for truck %s", appointment.appointment_number, appointment.truck_number)
        return appointment
    raise AppointmentError(f"Could not allocate appointment numbers for {pickup.isoformat()}")


def clone_appointment(db: Session, source: Appointment, changed_by: Optional[int] = None) -> Appointment:
    """Copy *source* as a new Posted appointment with its own numbers."""
    fields = {name: getattr(source, name) for name in APPOINTMENT_FIELDS}
    t1s = [
        {"sad_no": t1.sad_no, "packing_type": t1.packing_type, "container_no": t1.container_no}
        for t1 in source.t1_records
    ]
    return create_appointment(
        db,
        fields,
        t1s,
        changed_by,
        action="clone",
        message=f"Cloned from {source.appointment_number}",
        before=snapshot_record(source),
    )


def set_status(db: Session, appointment: Appointment, status: str, changed_by: Optional[int] = None) -> bool:
    """Move *appointment* to *status*; returns False when nothing changed."""
    previous = appointment.status
    if previous == status:
        return False
    appointment.status = status
    appointment.updated_at = datetime.utcnow()
    log_appointment(
        db,
        appointment.id,
        "status_change",
        changed_by,
        before={"status": previous},
        after={"status": status},
    )
    db.commit()
    logger.info("Appointment %s: %s -> %s", appointment.appointment_number, previous, status)
    return True


def close_for_sad(db: Session, sad_no: str, changed_by: Optional[int] = None) -> int:
    """Complete every Posted appointment carrying *sad_no*; returns how many closed."""
    appointments = (
        db.query(Appointment)
        .join(T1Record, T1Record.appointment_id == Appointment.id)
        .filter(T1Record.sad_no == sad_no, Appointment.status == "Posted")
        .distinct()
        .all()
    )
    now = datetime.utcnow()
    for appointment in appointments:
        appointment.status = "Completed"
        appointment.updated_at = now
        log_appointment(
            db,
            appointment.id,
            "sad_auto_close",
            changed_by,
            message=f"SAD {sad_no} marked Completed; appointment closed",
            before={"status": "Posted"},
            after={"status": "Completed"},
        )
    if appointments:
        db.commit()
        logger.info("SAD %s completed: closed %d appointment(s)", sad_no, len(appointments))
    return len(appointments)


def delete_appointment(db: Session, appointment: Appointment, changed_by: Optional[int] = None) -> None:
    log_appointment(
        db,
        appointment.id,
        "delete",
        changed_by,
        message=f"Deleted appointment {appointment.appointment_number}",
        before=snapshot_record(appointment),
    )
    db.delete(appointment)
    db.commit()
    logger.info("Deleted appointment %s", appointment.appointment_number)


def appointment_logs(db: Session, appointment_id: int) -> List[AppointmentLog]:
    return (
        db.query(AppointmentLog)
        .filter(AppointmentLog.appointment_id == appointment_id)
        .order_by(AppointmentLog.created_at.desc(), AppointmentLog.id.desc())
        .all()
    )


def appointment_stats(db: Session, today: Optional[date] = None) -> Dict[str, int]:
    today = today or datetime.utcnow().date()
    counts = dict(db.query(Appointment.status, func.count(Appointment.id)).group_by(Appointment.status).all())
    overdue = (
        db.query(func.count(Appointment.id))
        .filter(Appointment.status == "Posted", Appointment.pickup_date < today)
        .scalar()
    )
    unique_sads = db.query(func.count(func.distinct(T1Record.sad_no))).scalar()
    return {
        "total": sum(counts.values()),
        "posted": counts.get("Posted", 0),
        "completed": counts.get("Completed", 0),
        "overdue": overdue or 0,
        "unique_sads": unique_sads or 0,
    }
