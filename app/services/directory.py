"""User directory lookups shared by auth, initiation and the identity webhook."""
from typing import Optional

from sqlalchemy.orm import Session

from app import models
from app.errors import NotFoundError


def get_user(user_id: str, db: Session) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.id == user_id).first()


def find_active_by_phone(phone: str, db: Session) -> Optional[models.User]:
    return db.query(models.User).filter(
        models.User.phone == phone,
        models.User.is_active.is_(True),
    ).first()


def require_active_by_phone(phone: str, db: Session) -> models.User:
    user = find_active_by_phone(phone, db)
    if user is None:
        raise NotFoundError(f"No active user with phone {phone}")
    return user
