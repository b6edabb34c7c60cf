import logging
import re
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..database import get_db
from ..deps import require_user
from ..models import User
from ..notifications import DEFAULT_PREFERENCES, get_preferences, set_preferences
from ..schemas import Preferences, UserCreate, UserRead, UserUpdate

logger = logging.getLogger(__name__)

router = APIRouter()

SOUNDS = ("beep", "chime", "ding", "alarm")


def _get_user_or_404(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


def _email_taken(db: Session, email: str, exclude_id: Optional[int] = None) -> bool:
    query = db.query(User.id).filter(func.lower(User.email) == email.lower())
    if exclude_id is not None:
        query = query.filter(User.id != exclude_id)
    return query.first() is not None


def generate_username(db: Session, email: str) -> str:
    """Username from the email local part, suffixed with a counter when taken."""
    base = re.sub(r"[^a-z0-9._]", "", email.split("@", 1)[0].lower()) or "user"
    candidate = base
    counter = 1
    while db.query(User.id).filter(User.username == candidate).first():
        counter += 1
        candidate = f"{base}{counter}"
    return candidate


def _preferences_out(values: dict) -> Preferences:
    sound = values.get("notif_sound", DEFAULT_PREFERENCES["notif_sound"])
    return Preferences(
        muted=str(values.get("notif_muted", "false")).lower() == "true",
        sound=sound if sound in SOUNDS else DEFAULT_PREFERENCES["notif_sound"],
    )


@router.get("/users/me/preferences", response_model=Preferences)
def read_preferences(
    db: Session = Depends(get_db),
    user: User = Depends(require_user),
) -> Preferences:
    return _preferences_out(get_preferences(db, user))


@router.put("/users/me/preferences", response_model=Preferences)
def update_preferences(
    payload: Preferences,
    db: Session = Depends(get_db),
    user: User = Depends(require_user),
) -> Preferences:
    values = set_preferences(
        db,
        user,
        {"notif_muted": "true" if payload.muted else "false", "notif_sound": payload.sound},
    )
    return _preferences_out(values)


@router.get("/users", response_model=List[UserRead])
def list_users(
    q: Optional[str] = Query(None, description="Name or email substring"),
    role: Optional[str] = Query(None),
    db: Session = Depends(get_db),
) -> List[User]:
    query = db.query(User)
    if q:
        pattern = f"%{q.strip()}%"
        query = query.filter(or_(User.full_name.ilike(pattern), User.email.ilike(pattern)))
    if role:
        query = query.filter(User.role == role.strip().lower())
    return query.order_by(User.full_name.asc(), User.id.asc()).all()


@router.get("/users/{user_id}", response_model=UserRead)
def get_user(user_id: int, db: Session = Depends(get_db)) -> User:
    return _get_user_or_404(db, user_id)


@router.post("/users", response_model=UserRead, status_code=201)
def create_user(payload: UserCreate, db: Session = Depends(get_db)) -> User:
    if _email_taken(db, payload.email):
        raise HTTPException(status_code=409, detail="A user with this email already exists")
    user = User(
        full_name=payload.full_name.strip(),
        email=payload.email,
        username=generate_username(db, payload.email),
        role=payload.role,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="A user with this email already exists")
    db.refresh(user)
    logger.info("Created %s user %s", user.role, user.username)
    return user


@router.put("/users/{user_id}", response_model=UserRead)
def update_user(user_id: int, payload: UserUpdate, db: Session = Depends(get_db)) -> User:
    user = _get_user_or_404(db, user_id)
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    if "email" in changes and _email_taken(db, changes["email"], exclude_id=user.id):
        raise HTTPException(status_code=409, detail="A user with this email already exists")
    if "full_name" in changes:
        changes["full_name"] = changes["full_name"].strip()
        if not changes["full_name"]:
            raise HTTPException(status_code=422, detail="Full name is required")
    for key, value in changes.items():
        setattr(user, key, value)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="A user with this email already exists")
    db.refresh(user)
    return user


@router.delete("/users/{user_id}", status_code=204)
def delete_user(user_id: int, db: Session = Depends(get_db)) -> Response:
    user = _get_user_or_404(db, user_id)
    db.delete(user)
    db.commit()
    logger.info("Deleted user %s", user_id)
    return Response(status_code=204)
