"""
One-time passcodes.

Codes are 6 digits, stored only as SHA-256 hashes in otp_records, valid for
5 minutes and 3 attempts. At most one unverified record is live per
(phone, purpose, transaction): issuing a new code soft-invalidates the older
ones by marking them verified.

A wrong code and an already-used code both surface as OTPNotFoundError.
"""
import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.config import settings
from app.errors import MaxAttemptsExceededError, OTPExpiredError, OTPNotFoundError
from app.models import OTPPurpose, OTPRecord, utcnow
from app.services import crypto, sms

logger = logging.getLogger(__name__)

OTP_LENGTH = 6


def generate_code() -> str:
    return str(100000 + secrets.randbelow(900000))


class OTPDispatch:
    def __init__(self, record_id: int, expires_at: datetime, delivered: bool):
        self.record_id = record_id
        self.expires_at = expires_at
        self.delivered = delivered

    @property
    def expires_in(self) -> int:
        return settings.otp_expiry_seconds


def _scope(query, phone: str, purpose: OTPPurpose, transaction_id: Optional[str]):
    query = query.where(
        OTPRecord.phone == phone,
        OTPRecord.purpose == purpose,
        OTPRecord.is_verified.is_(False),
    )
    if transaction_id:
        query = query.where(OTPRecord.transaction_id == transaction_id)
    return query


def invalidate(
    phone: str,
    db: Session,
    purpose: Optional[OTPPurpose] = None,
    transaction_id: Optional[str] = None,
) -> int:
    """Mark unverified codes for phone as used. Does not commit."""
    stmt = update(OTPRecord).where(
        OTPRecord.phone == phone,
        OTPRecord.is_verified.is_(False),
    )
    if purpose is not None:
        stmt = stmt.where(OTPRecord.purpose == purpose)
    if transaction_id:
        stmt = stmt.where(OTPRecord.transaction_id == transaction_id)
    result = db.execute(
        stmt.values(is_verified=True).execution_options(synchronize_session=False)
    )
    return result.rowcount


def send(
    phone: str,
    purpose: OTPPurpose,
    db: Session,
    transaction_id: Optional[str] = None,
) -> OTPDispatch:
    """
    Issue a new code, persist its hash and text it to phone.

    Commits the session, so any pending changes the caller staged (e.g. a
    status transition) land in the same commit as the new record. SMS delivery
    happens after the commit and its failure is only logged.
    """
    superseded = invalidate(phone, db, purpose=purpose, transaction_id=transaction_id)
    if superseded:
        logger.info("Invalidated %d pending OTP(s) for %s/%s", superseded, phone, purpose.value)

    code = generate_code()
    expires_at = utcnow() + timedelta(seconds=settings.otp_expiry_seconds)
    record = OTPRecord(
        phone=phone,
        otp_hash=crypto.hash_value(code),
        purpose=purpose,
        transaction_id=transaction_id,
        attempts=0,
        expires_at=expires_at,
    )
    db.add(record)
    db.commit()
    db.refresh(record)

    if settings.is_development:
        logger.info("OTP for %s: %s", phone, code)

    delivered = sms.send_otp_sms(phone, code)
    if not delivered:
        logger.warning("OTP %s stored but SMS delivery to %s failed", record.id, phone)
    return OTPDispatch(record.id, expires_at, delivered)


def _increment_attempts(record: OTPRecord, db: Session) -> int:
    """Count one wrong code, never past the ceiling. Returns the committed count."""
    db.execute(
        update(OTPRecord)
        .where(
            OTPRecord.id == record.id,
            OTPRecord.attempts < settings.otp_max_attempts,
        )
        .values(attempts=OTPRecord.attempts + 1)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    db.refresh(record)
    return record.attempts


def verify(
    phone: str,
    code: str,
    purpose: OTPPurpose,
    db: Session,
    transaction_id: Optional[str] = None,
    commit: bool = True,
) -> OTPRecord:
    """
    Check code against the newest live record for (phone, purpose[, transaction]).

    With commit=False a successful verification is only flushed, letting the
    caller commit it together with its own writes. Failed attempts are always
    committed.

    Errors raised for a wrong code carry the record's committed attempt count
    in `attempts`; a missing record or a code consumed by a concurrent request
    leaves it None.

    Raises:
        OTPNotFoundError: no live record, or the code does not match
        MaxAttemptsExceededError: the record has used up its attempts
        OTPExpiredError: the record is past its expiry
    """
    record = db.execute(
        _scope(select(OTPRecord), phone, purpose, transaction_id)
        .order_by(OTPRecord.created_at.desc(), OTPRecord.id.desc())
        .limit(1)
    ).scalars().first()

    if record is None:
        raise OTPNotFoundError("Invalid or expired OTP")

    if record.attempts >= settings.otp_max_attempts:
        raise MaxAttemptsExceededError("Maximum OTP attempts exceeded",
                                       attempts=record.attempts)

    if record.expires_at < utcnow():
        raise OTPExpiredError("OTP has expired")

    if not crypto.verify_hash(code or "", record.otp_hash):
        attempts = _increment_attempts(record, db)
        logger.warning("Wrong OTP for %s (attempt %d/%d)", phone, attempts,
                       settings.otp_max_attempts)
        if attempts >= settings.otp_max_attempts:
            raise MaxAttemptsExceededError("Maximum OTP attempts exceeded",
                                           attempts=attempts)
        raise OTPNotFoundError("Invalid or expired OTP", attempts=attempts)

    verified_at = utcnow()
    result = db.execute(
        update(OTPRecord)
        .where(OTPRecord.id == record.id, OTPRecord.is_verified.is_(False))
        .values(is_verified=True, verified_at=verified_at)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        # Another request consumed this code between our read and write
        db.rollback()
        raise OTPNotFoundError("Invalid or expired OTP")
    if commit:
        db.commit()
        db.refresh(record)
    return record
