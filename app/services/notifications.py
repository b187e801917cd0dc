"""
In-app notifications.

notify() is fire-and-forget: a failed insert is logged and rolled back, it
never fails the protocol step that triggered it. Call it only after the step's
own state has been committed.
"""
import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app import models

logger = logging.getLogger(__name__)

PRIORITY_NORMAL = "NORMAL"
PRIORITY_HIGH = "HIGH"
CATEGORY_TRANSACTION = "TRANSACTION"


def transaction_url(transaction_id: str) -> str:
    return f"/transactions/{transaction_id}"


def notify(
    db: Session,
    user_id: str,
    title: str,
    message: str,
    category: str = CATEGORY_TRANSACTION,
    priority: str = PRIORITY_NORMAL,
    action_url: Optional[str] = None,
    company_id: Optional[str] = None,
) -> bool:
    try:
        db.add(models.Notification(
            user_id=user_id,
            company_id=company_id,
            title=title,
            message=message,
            category=category,
            priority=priority,
            action_url=action_url,
        ))
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning("Notification for %s dropped: %s", user_id, e)
        return False
    return True
