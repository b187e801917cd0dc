"""
QR token service.

Builds and validates the two QR payload types on top of the token codec.

Payload fields:
  transaction_id, type ("qr1" | "qr2"), amount (decimal string),
  sender_id, receiver_id, timestamp, expires_at (epoch ms), nonce

Windows: QR1 15 minutes, QR2 10 minutes (see app.config).
"""
import base64
import secrets
import time
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from io import BytesIO
from typing import Any, Dict, Optional

import qrcode
from PIL import Image
from qrcode.constants import ERROR_CORRECT_H

from app.config import settings
from app.errors import DecryptionError, ExpiredTokenError, InvalidQRError
from app.services import crypto

QR1 = "qr1"
QR2 = "qr2"
QR_TYPES = (QR1, QR2)

REQUIRED_FIELDS = ("transaction_id", "type", "amount", "expires_at")


def now_ms() -> int:
    return int(time.time() * 1000)


def expiry_seconds(qr_type: str) -> int:
    if qr_type == QR1:
        return settings.qr1_expiry_seconds
    if qr_type == QR2:
        return settings.qr2_expiry_seconds
    raise ValueError(f"Unknown QR type: {qr_type}")


class GeneratedQR:
    def __init__(self, image: str, encrypted_data: str, payload: Dict[str, Any]):
        self.image = image
        self.encrypted_data = encrypted_data
        self.payload = payload

    @property
    def expires_at_ms(self) -> int:
        return self.payload["expires_at"]


def render_image(data: str, size: Optional[int] = None) -> str:
    """PNG data URL of a high error-correction QR code, scaled to size x size."""
    size = size or settings.qr_image_size
    qr = qrcode.QRCode(error_correction=ERROR_CORRECT_H, box_size=10, border=2)
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white").get_image()
    img = img.convert("RGB").resize((size, size), Image.NEAREST)
    buffer = BytesIO()
    img.save(buffer, format="PNG")
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"


def generate(
    payload: Dict[str, Any],
    key: str,
    iv: str,
    qr_type: str,
    issued_at_ms: Optional[int] = None,
) -> GeneratedQR:
    """
    Stamp the payload with issue time, expiry and a fresh nonce, encrypt it with
    the transaction's key/iv and render the scannable image.
    """
    issued = issued_at_ms if issued_at_ms is not None else now_ms()
    stamped = dict(payload)
    stamped.update(
        type=qr_type,
        amount=str(payload["amount"]),
        timestamp=issued,
        expires_at=issued + expiry_seconds(qr_type) * 1000,
        nonce=secrets.token_hex(8),
    )
    encrypted = crypto.encrypt(stamped, key, iv)
    return GeneratedQR(render_image(encrypted), encrypted, stamped)


def validate(
    encrypted_data: str,
    key: str,
    iv: str,
    at_ms: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Decrypt and structurally validate a QR blob.

    Raises:
        InvalidQRError: blob does not decrypt under key/iv or fields are missing
        ExpiredTokenError: payload is well-formed but past its expiry
    """
    try:
        payload = crypto.decrypt(encrypted_data, key, iv)
    except DecryptionError as e:
        raise InvalidQRError(f"QR code could not be decoded: {e.message}")

    missing = [f for f in REQUIRED_FIELDS if not payload.get(f)]
    if missing:
        raise InvalidQRError(f"QR code is missing fields: {', '.join(missing)}")
    if payload["type"] not in QR_TYPES:
        raise InvalidQRError(f"Unknown QR type: {payload['type']}")
    try:
        amount = Decimal(str(payload["amount"]))
    except InvalidOperation:
        raise InvalidQRError("QR code amount is not a number")
    if amount <= 0:
        raise InvalidQRError("QR code amount must be positive")
    if not isinstance(payload["expires_at"], int):
        raise InvalidQRError("QR code expiry is malformed")

    if is_expired(payload, at_ms):
        raise ExpiredTokenError(f"{payload['type'].upper()} code has expired")
    return payload


def is_expired(payload: Dict[str, Any], at_ms: Optional[int] = None) -> bool:
    current = at_ms if at_ms is not None else now_ms()
    return payload["expires_at"] < current


def remaining_seconds(payload: Dict[str, Any], at_ms: Optional[int] = None) -> int:
    current = at_ms if at_ms is not None else now_ms()
    return max(0, (payload["expires_at"] - current) // 1000)


def window_remaining(expires_at: Optional[datetime], at_ms: Optional[int] = None) -> int:
    """remaining_seconds() for a stored naive-UTC expiry column; None counts as closed."""
    if expires_at is None:
        return 0
    expires_ms = int(expires_at.replace(tzinfo=timezone.utc).timestamp() * 1000)
    return remaining_seconds({"expires_at": expires_ms}, at_ms)
