"""Applies identity provider events to the local user directory."""
import logging
from typing import Mapping, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from svix.webhooks import Webhook, WebhookVerificationError

from app import models
from app.config import settings
from app.errors import AuthenticationError, ValidationError
from app.schemas.events import UserCreatedEvent, UserDeletedEvent, UserUpdatedEvent

logger = logging.getLogger(__name__)


def verify_webhook(body: bytes, headers: Mapping[str, str]) -> None:
    """
    Check the svix-id / svix-timestamp / svix-signature headers against body.

    The signed payload includes the message id and timestamp, and timestamps
    outside svix's tolerance window are refused, so a captured delivery
    cannot be replayed later.
    """
    if not settings.webhook_secret:
        raise AuthenticationError("Identity webhook secret is not configured")
    try:
        Webhook(settings.webhook_secret).verify(body, dict(headers))
    except WebhookVerificationError as e:
        logger.warning("Rejected identity webhook: %s", e)
        raise AuthenticationError("Invalid webhook signature")


def _by_external_id(external_id: str, db: Session) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.external_id == external_id).first()


def _upsert(event, db: Session) -> models.User:
    data = event.data
    user = _by_external_id(data.id, db)
    if user is None:
        user = models.User(external_id=data.id)
        db.add(user)
    user.phone = data.primary_phone
    user.email = data.primary_email
    user.first_name = data.first_name
    user.last_name = data.last_name
    user.company_id = data.company_id
    user.is_active = True
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValidationError(f"Phone {data.primary_phone} is already registered")
    db.refresh(user)
    return user


def apply_event(event, db: Session) -> Optional[models.User]:
    if isinstance(event, (UserCreatedEvent, UserUpdatedEvent)):
        user = _upsert(event, db)
        logger.info("Synced user %s from %s", user.id, event.type)
        return user

    if isinstance(event, UserDeletedEvent):
        user = _by_external_id(event.data.id, db)
        if user is None:
            logger.info("Delete for unknown identity %s ignored", event.data.id)
            return None
        user.is_active = False
        db.commit()
        db.refresh(user)
        logger.info("Deactivated user %s", user.id)
        return user

    raise ValidationError(f"Unsupported identity event: {type(event).__name__}")
