from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..deps import require_user
from ..models import Notification, User
from ..notifications import clear_all, mark, notifications_for
from ..schemas import NotificationOut

router = APIRouter()


def _own_notification(db: Session, user: User, notification_id: int) -> Notification:
    notification = db.get(Notification, notification_id)
    if not notification or notification.role != user.role:
        raise HTTPException(status_code=404, detail="Notification not found")
    return notification


@router.get("/notifications", response_model=List[NotificationOut])
def list_notifications(
    include_dismissed: bool = Query(False),
    db: Session = Depends(get_db),
    user: User = Depends(require_user),
) -> List[dict]:
    """Notifications for the caller's role with their own read/dismissed state."""
    return notifications_for(db, user, include_dismissed=include_dismissed)


@router.post("/notifications/clear")
def clear_notifications(db: Session = Depends(get_db), user: User = Depends(require_user)) -> dict:
    return {"cleared": clear_all(db, user)}


@router.post("/notifications/{notification_id}/read")
def read_notification(
    notification_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_user),
) -> dict:
    _own_notification(db, user, notification_id)
    state = mark(db, user, notification_id, read=True)
    return {"id": notification_id, "is_read": state.is_read, "dismissed": state.dismissed}


@router.post("/notifications/{notification_id}/dismiss")
def dismiss_notification(
    notification_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_user),
) -> dict:
    _own_notification(db, user, notification_id)
    state = mark(db, user, notification_id, read=True, dismissed=True)
    return {"id": notification_id, "is_read": state.is_read, "dismissed": state.dismissed}
