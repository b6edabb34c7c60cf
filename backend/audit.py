"""Ticket audit trail and the log of generated report files."""

import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .models import AuditLog, ReportGenerated, Ticket, User

logger = logging.getLogger(__name__)

AUDIT_ACTIONS = ("create", "update", "delete")
LOG_LIMIT = 200


def _plain(filters: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    plain = {}
    for key, value in (filters or {}).items():
        if value is None:
            continue
        plain[key] = value.isoformat() if isinstance(value, (date, datetime)) else value
    return plain


def record_audit(
    db: Session,
    action: str,
    ticket: Ticket,
    user: Optional[User] = None,
    before: Optional[Dict[str, Any]] = None,
    after: Optional[Dict[str, Any]] = None,
) -> None:
    """Append a ticket audit entry; a failed write is logged, not raised."""
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action {action!r}")
    try:
        db.add(
            AuditLog(
                action=action,
                ticket_id=ticket.id,
                ticket_no=ticket.ticket_no,
                user_id=user.id if user else None,
                username=user.username if user else None,
                details={"before": before, "after": after},
            )
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Could not audit %s of ticket %s", action, ticket.ticket_no)


def audit_entries(
    db: Session,
    ticket_id: Optional[int] = None,
    action: Optional[str] = None,
    limit: int = LOG_LIMIT,
) -> List[AuditLog]:
    query = db.query(AuditLog)
    if ticket_id is not None:
        query = query.filter(AuditLog.ticket_id == ticket_id)
    if action:
        query = query.filter(AuditLog.action == action)
    return query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit).all()


def record_report(
    db: Session,
    report_type: str,
    filename: str,
    user: Optional[User] = None,
    filters: Optional[Dict[str, Any]] = None,
) -> None:
    """Note that an export was produced; a failed write never blocks the download."""
    try:
        db.add(
            ReportGenerated(
                report_type=report_type,
                generated_by=user.id if user else None,
                filename=filename,
                filters=_plain(filters),
            )
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Could not log %s report %s", report_type, filename)


def generated_reports(
    db: Session,
    report_type: Optional[str] = None,
    limit: int = LOG_LIMIT,
) -> List[ReportGenerated]:
    query = db.query(ReportGenerated)
    if report_type:
        query = query.filter(ReportGenerated.report_type == report_type)
    return query.order_by(ReportGenerated.generated_at.desc(), ReportGenerated.id.desc()).limit(limit).all()
