"""SAD activity timeline."""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .models import SadActivity

logger = logging.getLogger(__name__)

ACTIVITY_LIMIT = 100


def record_activity(db: Session, text: str, meta: Optional[Dict[str, Any]] = None) -> None:
    """Append an entry to the timeline; a failed write is logged, not raised."""
    try:
        db.add(SadActivity(text=text, meta=meta or {}))
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Could not record activity %r", text)


def recent_activity(db: Session, limit: int = ACTIVITY_LIMIT) -> List[SadActivity]:
    return (
        db.query(SadActivity)
        .order_by(SadActivity.created_at.desc(), SadActivity.id.desc())
        .limit(limit)
        .all()
    )
