"""
Role-specific ticket notifications.

Ticket writes call `notify_ticket_change`, which stores one Notification per
interested role. Readers fetch the rows for their role and keep their own
read/dismissed state in NotificationRead.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .models import Notification, NotificationRead, Ticket, User, UserPreference

logger = logging.getLogger(__name__)

# Ticket statuses each role is alerted about.
ROLE_EVENTS: Dict[str, FrozenSet[str]] = {
    "admin": frozenset({"Pending", "Exited"}),
    "weighbridge": frozenset({"Exited"}),
    "outgate": frozenset({"Pending"}),
}

NOTIFICATION_LIMIT = 200

DEFAULT_PREFERENCES = {"notif_muted": "false", "notif_sound": "beep"}


@dataclass(frozen=True)
class TicketAlert:
    role: str
    message: str
    level: str
    flagged: bool


def ticket_alerts(
    status: str,
    truck_no: Optional[str],
    ticket_no: Optional[str],
    flagged: bool = False,
    previous_status: Optional[str] = None,
) -> List[TicketAlert]:
    """Alerts produced by a ticket insert (previous_status None) or update.

    Updates that leave the status unchanged produce nothing.
    """
    if previous_status is not None and previous_status == status:
        return []

    truck = truck_no or "Unknown"
    suffix = f" ({ticket_no})" if ticket_no else ""
    if status == "Pending":
        message = f"New Pending Ticket: {truck}{suffix}"
        level = "critical" if flagged else "info"
    elif status == "Exited":
        message = f"Vehicle Exited: {truck}{suffix}"
        level = "warning" if flagged else "info"
    else:
        return []

    return [
        TicketAlert(role=role, message=message, level=level, flagged=flagged)
        for role, statuses in ROLE_EVENTS.items()
        if status in statuses
    ]


def notify_ticket_change(db: Session, ticket: Ticket, previous_status: Optional[str] = None) -> int:
    """Persist alerts for *ticket*; duplicates of an existing alert are skipped."""
    alerts = ticket_alerts(
        ticket.status,
        ticket.truck_no,
        ticket.ticket_no,
        flagged=bool(ticket.flagged),
        previous_status=previous_status,
    )
    stored = 0
    for alert in alerts:
        exists = (
            db.query(Notification.id)
            .filter(
                Notification.ticket_id == ticket.id,
                Notification.role == alert.role,
                Notification.message == alert.message,
            )
            .first()
        )
        if exists:
            continue
        db.add(
            Notification(
                ticket_id=ticket.id,
                role=alert.role,
                message=alert.message,
                level=alert.level,
                meta={"ticket_id": ticket.id, "ticket_no": ticket.ticket_no, "flagged": alert.flagged},
            )
        )
        # one commit per alert so a duplicate only drops its own row
        try:
            db.commit()
        except IntegrityError:
            # a concurrent writer stored the same alert first
            db.rollback()
            logger.warning("Duplicate %s notification for ticket %s skipped", alert.role, ticket.ticket_no)
            continue
        stored += 1
    if stored:
        logger.info("Stored %d notification(s) for ticket %s (%s)", stored, ticket.ticket_no, ticket.status)
    return stored


def notifications_for(db: Session, user: User, include_dismissed: bool = False) -> List[dict]:
    rows = (
        db.query(Notification)
        .filter(Notification.role == user.role)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(NOTIFICATION_LIMIT)
        .all()
    )
    reads = {
        read.notification_id: read
        for read in db.query(NotificationRead)
        .filter(
            NotificationRead.user_id == user.id,
            NotificationRead.notification_id.in_([row.id for row in rows]),
        )
        .all()
    }

    merged = []
    for row in rows:
        read = reads.get(row.id)
        dismissed = bool(read and read.dismissed)
        if dismissed and not include_dismissed:
            continue
        merged.append(
            {
                "id": row.id,
                "ticket_id": row.ticket_id,
                "message": row.message,
                "level": row.level,
                "meta": row.meta,
                "flagged": bool((row.meta or {}).get("flagged")),
                "created_at": row.created_at,
                "is_read": bool(read and read.is_read),
                "dismissed": dismissed,
            }
        )
    return merged


def mark(db: Session, user: User, notification_id: int, *, read: bool = True, dismissed: bool = False) -> NotificationRead:
    state = (
        db.query(NotificationRead)
        .filter(NotificationRead.notification_id == notification_id, NotificationRead.user_id == user.id)
        .one_or_none()
    )
    if state is None:
        state = NotificationRead(notification_id=notification_id, user_id=user.id)
        db.add(state)
    state.is_read = bool(state.is_read) or read
    state.dismissed = bool(state.dismissed) or dismissed
    db.commit()
    return state


def clear_all(db: Session, user: User) -> int:
    ids = [row.id for row in db.query(Notification.id).filter(Notification.role == user.role).all()]
    for notification_id in ids:
        mark(db, user, notification_id, read=True, dismissed=True)
    return len(ids)


def get_preferences(db: Session, user: User) -> Dict[str, str]:
    values = dict(DEFAULT_PREFERENCES)
    for pref in db.query(UserPreference).filter(UserPreference.user_id == user.id).all():
        values[pref.key] = pref.value
    return values


def set_preferences(db: Session, user: User, values: Dict[str, str]) -> Dict[str, str]:
    existing = {
        pref.key: pref for pref in db.query(UserPreference).filter(UserPreference.user_id == user.id).all()
    }
    for key, value in values.items():
        if key in existing:
            existing[key].value = value
        else:
            db.add(UserPreference(user_id=user.id, key=key, value=value))
    db.commit()
    return get_preferences(db, user)
