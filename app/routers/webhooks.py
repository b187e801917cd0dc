import json
import logging

from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from app.database import get_db
from app.errors import ValidationError
from app.schemas.events import HANDLED_EVENT_TYPES, identity_event_adapter
from app.schemas.responses import WebhookAck
from app.services import identity

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/identity", response_model=WebhookAck)
async def identity_webhook(
    request: Request,
    db: Session = Depends(get_db),
):
    """
    Sync the user directory from the identity provider.

    The raw body must carry a valid svix signature for the shared secret.
    Event types we do not handle are acknowledged and ignored.
    """
    body = await request.body()
    identity.verify_webhook(body, request.headers)

    try:
        event_type = json.loads(body).get("type")
    except (ValueError, AttributeError):
        raise ValidationError("Webhook body is not a JSON object")
    if event_type not in HANDLED_EVENT_TYPES:
        logger.info("Unhandled identity event: %s", event_type)
        return WebhookAck(status="ignored")

    try:
        event = identity_event_adapter.validate_json(body)
    except PydanticValidationError as e:
        raise ValidationError(f"Malformed {event_type} event: {e.error_count()} error(s)")

    user = identity.apply_event(event, db)
    return WebhookAck(status="processed", user_id=user.id if user else None)
