"""Request-scoped dependencies shared by the routers."""

from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from .database import get_db
from .models import User


def current_user(
    x_user_id: Optional[int] = Header(default=None),
    db: Session = Depends(get_db),
) -> Optional[User]:
    """Resolve the acting user from the X-User-Id header set by the identity gateway."""
    if x_user_id is None:
        return None
    return db.get(User, x_user_id)


def require_user(user: Optional[User] = Depends(current_user)) -> User:
    if user is None:
        raise HTTPException(status_code=401, detail="Unknown or missing user")
    return user


def require_admin(user: User = Depends(require_user)) -> User:
    if user.role != "admin":
        raise HTTPException(status_code=403, detail="Only admins can do this")
    return user
