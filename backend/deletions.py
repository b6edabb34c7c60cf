"""
Delayed deletes with an undo window.

A delete request stores a PendingDeletion; the row itself is only removed once
`execute_after` has passed. Undo removes the PendingDeletion. A background
sweeper started from the app lifespan commits expired deletions.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.inspection import inspect as sa_inspect
from sqlalchemy.orm import Session

from .database import SessionLocal
from .models import Driver, PendingDeletion, Ticket

logger = logging.getLogger(__name__)

RESOURCES = {
    "tickets": Ticket,
    "drivers": Driver,
}

SWEEPER_STATE: dict = {"task": None}


def _json_default(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def snapshot_record(record: Any) -> Dict[str, Any]:
    mapper = sa_inspect(record.__class__)
    return {column.key: _json_default(getattr(record, column.key)) for column in mapper.columns}


def schedule_deletion(
    db: Session,
    resource: str,
    record: Any,
    window_seconds: float,
    requested_by: Optional[int] = None,
) -> PendingDeletion:
    existing = (
        db.query(PendingDeletion)
        .filter(PendingDeletion.resource == resource, PendingDeletion.resource_id == record.id)
        .one_or_none()
    )
    if existing:
        return existing

    pending = PendingDeletion(
        resource=resource,
        resource_id=record.id,
        snapshot=snapshot_record(record),
        requested_by=requested_by,
        execute_after=datetime.utcnow() + timedelta(seconds=window_seconds),
    )
    db.add(pending)
    db.commit()
    db.refresh(pending)
    logger.info("Scheduled delete of %s #%s after %.1fs", resource, record.id, window_seconds)
    return pending


def is_pending_deletion(db: Session, resource: str, resource_id: int) -> bool:
    return (
        db.query(PendingDeletion.id)
        .filter(PendingDeletion.resource == resource, PendingDeletion.resource_id == resource_id)
        .first()
        is not None
    )


def not_pending_deletion(resource: str, column):
    """Filter clause hiding rows that are waiting out their undo window."""
    pending = select(PendingDeletion.resource_id).where(PendingDeletion.resource == resource)
    return column.not_in(pending)


def undo_deletion(db: Session, pending_id: int) -> Optional[PendingDeletion]:
    pending = db.get(PendingDeletion, pending_id)
    if pending is None:
        return None
    db.delete(pending)
    db.commit()
    logger.info("Undid delete of %s #%s", pending.resource, pending.resource_id)
    return pending


def purge_expired(db: Session, now: Optional[datetime] = None) -> int:
    """Commit every deletion whose undo window has elapsed; returns the count removed."""
    now = now or datetime.utcnow()
    expired = db.query(PendingDeletion).filter(PendingDeletion.execute_after <= now).all()
    removed = 0
    for pending in expired:
        model = RESOURCES.get(pending.resource)
        record = db.get(model, pending.resource_id) if model else None
        try:
            if record is not None:
                db.delete(record)
                removed += 1
            db.delete(pending)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Could not delete %s #%s", pending.resource, pending.resource_id)
    return removed


async def _sweeper(interval: float) -> None:
    while True:
        session = SessionLocal()
        try:
            purge_expired(session)
        except SQLAlchemyError:
            logger.exception("Deletion sweep failed")
        finally:
            session.close()
        await asyncio.sleep(interval)


def start_sweeper(interval: float) -> None:
    task = SWEEPER_STATE["task"]
    if task is not None and not task.done():
        return
    SWEEPER_STATE["task"] = asyncio.create_task(_sweeper(interval))


async def stop_sweeper() -> None:
    task: Optional[asyncio.Task] = SWEEPER_STATE["task"]
    if task and not task.done():
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
    SWEEPER_STATE["task"] = None
