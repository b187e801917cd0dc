from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from app import models
from app.database import get_db
from app.errors import AuthenticationError
from app.services import directory


def get_current_user(
    x_user_id: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
) -> models.User:
    """
    Resolve the caller. The API gateway authenticates the session and forwards
    the user id in X-User-Id; this only checks that the user exists and is
    active.
    """
    if not x_user_id:
        raise AuthenticationError("Missing caller identity")
    user = directory.get_user(x_user_id, db)
    if user is None or not user.is_active:
        raise AuthenticationError("Unknown or inactive user")
    return user
