"""
Transaction orchestration.

Each step:
1. Load the transaction and check the caller is the right party
2. Ask the state machine whether the target status is allowed
3. Run the step's side effect (mint QR, send OTP, ...)
4. Persist with a compare-and-swap on status, plus an audit log row
5. Notify the other party (fire-and-forget)

Nothing is written until every check passes. The exceptions are expired QR
codes and exhausted/expired OTPs, which push the transaction to FAILED before
the error propagates: a timed-out step cannot be retried in place.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from app import models
from app.config import settings
from app.errors import (
    ConcurrentModificationError,
    ExpiredTokenError,
    InvalidQRError,
    MaxAttemptsExceededError,
    NotFoundError,
    OTPExpiredError,
    OTPNotFoundError,
    ValidationError,
)
from app.models import OTPPurpose, TransactionStatus, utcnow
from app.services import crypto, directory, notifications, otp
from app.services import qr as qr_service
from app.services import state_machine
from app.services.authorization import Party, require_party

logger = logging.getLogger(__name__)

Transaction = models.Transaction


def ms_to_datetime(value_ms: int) -> datetime:
    return datetime.fromtimestamp(value_ms / 1000, tz=timezone.utc).replace(tzinfo=None)


def mask_phone(phone: str) -> str:
    return f"{phone[:3]}****{phone[-3:]}" if phone and len(phone) > 6 else "****"


def load_transaction(transaction_id: str, db: Session) -> Transaction:
    txn = db.query(Transaction).filter(Transaction.id == transaction_id).first()
    if txn is None:
        raise NotFoundError(f"Transaction {transaction_id} not found")
    return txn


def _log(db: Session, txn: Transaction, action: str, status: TransactionStatus,
         actor_id: Optional[str], details: Optional[dict] = None):
    db.add(models.TransactionLog(
        transaction_id=txn.id,
        action=action,
        status=status,
        actor_id=actor_id,
        details=details or {},
    ))


def _transition(
    db: Session,
    txn: Transaction,
    target: TransactionStatus,
    actor_id: Optional[str],
    action: str,
    details: Optional[dict] = None,
    **values,
):
    """
    Write target status only if the row still holds the status we validated.
    Stages the change and the audit row; the caller commits.
    """
    expected = txn.status
    result = db.execute(
        update(Transaction)
        .where(Transaction.id == txn.id, Transaction.status == expected)
        .values(status=target, updated_at=utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        logger.warning("Lost race on %s: %s -> %s", txn.id, expected.value, target.value)
        raise ConcurrentModificationError(
            f"Transaction {txn.id} changed while moving from {expected.value} "
            f"to {target.value}; reload and retry"
        )
    _log(db, txn, action, target, actor_id, details)
    logger.info("Transaction %s: %s -> %s", txn.id, expected.value, target.value)


def _fail(db: Session, txn: Transaction, reason: str, actor_id: Optional[str], action: str,
          **values):
    """Force a non-terminal transaction to FAILED and commit."""
    if not state_machine.can_force_fail(txn.status):
        return
    try:
        _transition(db, txn, TransactionStatus.FAILED, actor_id, action,
                    details={"reason": reason}, failure_reason=reason, **values)
    except ConcurrentModificationError:
        # Whoever won already moved it on; the original error still stands
        return
    db.commit()
    db.refresh(txn)


def _mirror_attempts(db: Session, txn: Transaction, attempts: int):
    """
    Copy the OTP record's committed attempt count onto the transaction.
    Only moves the counter forward, and only while the OTP is still pending.
    """
    db.execute(
        update(Transaction)
        .where(
            Transaction.id == txn.id,
            Transaction.status == TransactionStatus.OTP_SENT,
            Transaction.otp_attempts < attempts,
        )
        .values(otp_attempts=attempts, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    db.commit()


def _validate_scanned_qr(db: Session, txn: Transaction, qr_code: str, qr_type: str,
                         caller: models.User) -> dict:
    try:
        payload = qr_service.validate(qr_code, txn.encryption_key, txn.iv)
    except ExpiredTokenError as e:
        _fail(db, txn, e.message, caller.id, f"{qr_type.upper()}_EXPIRED")
        raise
    if payload["type"] != qr_type or payload["transaction_id"] != txn.id:
        raise InvalidQRError(f"QR code is not a {qr_type.upper()} code for this transaction")
    return payload


def _mint_qr(txn: Transaction, qr_type: str) -> qr_service.GeneratedQR:
    return qr_service.generate(
        {
            "transaction_id": txn.id,
            "amount": Decimal(txn.amount),
            "sender_id": txn.sender_id,
            "receiver_id": txn.receiver_id,
        },
        txn.encryption_key,
        txn.iv,
        qr_type,
    )


def initiate(
    sender: models.User,
    receiver_phone: str,
    amount: Decimal,
    currency: str,
    db: Session,
    description: Optional[str] = None,
) -> Transaction:
    receiver = directory.require_active_by_phone(receiver_phone, db)
    if receiver.id == sender.id:
        raise ValidationError("Cannot initiate a transaction with yourself")
    if amount <= 0:
        raise ValidationError("Amount must be positive")

    txn = Transaction(
        sender_id=sender.id,
        receiver_id=receiver.id,
        company_id=sender.company_id,
        amount=amount,
        currency=currency.upper(),
        description=description,
        status=TransactionStatus.INITIATED,
        encryption_key=crypto.generate_key(),
        iv=crypto.generate_iv(),
        otp_attempts=0,
    )
    db.add(txn)
    db.flush()

    qr1 = _mint_qr(txn, qr_service.QR1)
    txn.qr1_code = qr1.image
    txn.qr1_encrypted_data = qr1.encrypted_data
    txn.qr1_generated_at = ms_to_datetime(qr1.payload["timestamp"])
    txn.qr1_expires_at = ms_to_datetime(qr1.expires_at_ms)
    _log(db, txn, "INITIATED", TransactionStatus.INITIATED, sender.id,
         {"receiver_id": receiver.id})
    db.commit()
    db.refresh(txn)
    logger.info("Transaction %s initiated by %s for %s %s", txn.id, sender.id,
                txn.currency, txn.amount)

    notifications.notify(
        db, receiver.id, "New Transaction Request",
        f"You have a new transaction request for {txn.currency} {txn.amount}",
        priority=notifications.PRIORITY_HIGH,
        action_url=notifications.transaction_url(txn.id),
        company_id=receiver.company_id,
    )
    return txn


def scan_qr1(caller: models.User, qr_code: str, db: Session) -> Transaction:
    txn = db.query(Transaction).filter(Transaction.qr1_encrypted_data == qr_code).first()
    if txn is None:
        raise InvalidQRError("Unrecognized QR code")
    require_party(caller.id, txn, Party.RECEIVER)
    state_machine.apply(txn, TransactionStatus.QR1_SCANNED)

    payload = _validate_scanned_qr(db, txn, qr_code, qr_service.QR1, caller)
    if payload.get("receiver_id") != caller.id:
        raise InvalidQRError("QR code was issued to a different receiver")

    _transition(db, txn, TransactionStatus.QR1_SCANNED, caller.id, "QR1_SCANNED",
                {"scanned_by": caller.id})
    db.commit()
    db.refresh(txn)

    notifications.notify(
        db, txn.sender_id, "QR Code Scanned",
        f"{caller.display_name} has scanned your QR code",
        action_url=notifications.transaction_url(txn.id),
        company_id=txn.company_id,
    )
    return txn


def generate_qr2(caller: models.User, transaction_id: str, db: Session) -> Transaction:
    txn = load_transaction(transaction_id, db)
    require_party(caller.id, txn, Party.RECEIVER)
    state_machine.apply(txn, TransactionStatus.QR2_GENERATED)

    qr2 = _mint_qr(txn, qr_service.QR2)
    _transition(
        db, txn, TransactionStatus.QR2_GENERATED, caller.id, "QR2_GENERATED",
        {"generated_by": caller.id},
        qr2_code=qr2.image,
        qr2_encrypted_data=qr2.encrypted_data,
        qr2_generated_at=ms_to_datetime(qr2.payload["timestamp"]),
        qr2_expires_at=ms_to_datetime(qr2.expires_at_ms),
    )
    db.commit()
    db.refresh(txn)

    notifications.notify(
        db, txn.sender_id, "QR2 Generated", "Scan the QR2 code to continue",
        priority=notifications.PRIORITY_HIGH,
        action_url=notifications.transaction_url(txn.id),
        company_id=txn.company_id,
    )
    return txn


def scan_qr2(caller: models.User, qr_code: str, db: Session) -> Transaction:
    txn = db.query(Transaction).filter(Transaction.qr2_encrypted_data == qr_code).first()
    if txn is None:
        raise InvalidQRError("Unrecognized QR code")
    require_party(caller.id, txn, Party.SENDER)
    state_machine.apply(txn, TransactionStatus.QR2_SCANNED)

    payload = _validate_scanned_qr(db, txn, qr_code, qr_service.QR2, caller)
    if payload.get("sender_id") != caller.id:
        raise InvalidQRError("QR code was issued to a different sender")

    _transition(db, txn, TransactionStatus.QR2_SCANNED, caller.id, "QR2_SCANNED",
                {"scanned_by": caller.id})
    db.commit()
    db.refresh(txn)

    notifications.notify(
        db, txn.receiver_id, "QR2 Scanned",
        f"{caller.display_name} has scanned QR2; awaiting OTP confirmation",
        action_url=notifications.transaction_url(txn.id),
        company_id=txn.company_id,
    )
    return txn


def send_otp(caller: models.User, transaction_id: str,
             db: Session) -> Tuple[Transaction, otp.OTPDispatch]:
    txn = load_transaction(transaction_id, db)
    require_party(caller.id, txn, Party.SENDER)
    state_machine.apply(txn, TransactionStatus.OTP_SENT)
    if not caller.phone:
        raise ValidationError("Phone number not found")

    _transition(db, txn, TransactionStatus.OTP_SENT, caller.id, "OTP_SENT",
                {"sent_to": mask_phone(caller.phone)}, otp_sent_at=utcnow())
    # Commits the transition and the OTP record together
    dispatch = otp.send(caller.phone, OTPPurpose.TRANSACTION, db, transaction_id=txn.id)
    db.refresh(txn)
    return txn, dispatch


def verify_otp(caller: models.User, transaction_id: str, code: str,
               db: Session) -> Transaction:
    txn = load_transaction(transaction_id, db)
    require_party(caller.id, txn, Party.SENDER)
    state_machine.apply(txn, TransactionStatus.OTP_VERIFIED)
    if not caller.phone:
        raise ValidationError("Phone number not found")

    try:
        otp.verify(caller.phone, code, OTPPurpose.TRANSACTION, db,
                   transaction_id=txn.id, commit=False)
    except OTPNotFoundError as e:
        if e.attempts is not None:
            _mirror_attempts(db, txn, e.attempts)
        raise
    except MaxAttemptsExceededError as e:
        attempts = min(e.attempts or settings.otp_max_attempts, settings.otp_max_attempts)
        _fail(db, txn, e.message, caller.id, "OTP_ATTEMPTS_EXCEEDED", otp_attempts=attempts)
        raise
    except OTPExpiredError as e:
        _fail(db, txn, e.message, caller.id, "OTP_EXPIRED")
        raise

    _transition(db, txn, TransactionStatus.OTP_VERIFIED, caller.id, "OTP_VERIFIED",
                {"verified_by": caller.id}, otp_verified_at=utcnow())
    db.commit()
    db.refresh(txn)
    return txn


def complete(caller: models.User, transaction_id: str, db: Session) -> Transaction:
    txn = load_transaction(transaction_id, db)
    require_party(caller.id, txn, Party.SENDER)
    state_machine.apply(txn, TransactionStatus.COMPLETED)

    _transition(db, txn, TransactionStatus.COMPLETED, caller.id, "TRANSACTION_COMPLETED",
                {"completed_by": caller.id}, completed_at=utcnow())
    db.commit()
    db.refresh(txn)

    action_url = notifications.transaction_url(txn.id)
    notifications.notify(
        db, txn.sender_id, "Transaction Completed",
        f"Transaction {txn.transaction_number} completed successfully",
        priority=notifications.PRIORITY_HIGH, action_url=action_url,
        company_id=txn.company_id,
    )
    notifications.notify(
        db, txn.receiver_id, "Payment Received",
        f"Payment of {txn.currency} {txn.amount} received",
        priority=notifications.PRIORITY_HIGH, action_url=action_url,
        company_id=txn.company_id,
    )
    return txn


def cancel(caller: models.User, transaction_id: str, db: Session,
           reason: Optional[str] = None) -> Transaction:
    txn = load_transaction(transaction_id, db)
    require_party(caller.id, txn, Party.SENDER)
    state_machine.apply(txn, TransactionStatus.CANCELLED)

    reason = reason or "Cancelled by sender"
    _transition(db, txn, TransactionStatus.CANCELLED, caller.id, "CANCELLED",
                {"reason": reason}, failure_reason=reason)
    db.commit()
    db.refresh(txn)

    notifications.notify(
        db, txn.receiver_id, "Transaction Cancelled",
        f"Transaction {txn.transaction_number} was cancelled by the sender",
        action_url=notifications.transaction_url(txn.id),
        company_id=txn.company_id,
    )
    return txn


def get_transaction(caller: models.User, transaction_id: str, db: Session) -> Transaction:
    txn = load_transaction(transaction_id, db)
    require_party(caller.id, txn)
    return txn


def recent_logs(transaction_id: str, db: Session, limit: int = 10) -> List[models.TransactionLog]:
    return db.query(models.TransactionLog).filter(
        models.TransactionLog.transaction_id == transaction_id
    ).order_by(
        models.TransactionLog.created_at.desc(),
        models.TransactionLog.id.desc(),
    ).limit(limit).all()


def list_transactions(
    caller: models.User,
    db: Session,
    status: Optional[TransactionStatus] = None,
    party: Optional[Party] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[Transaction]:
    query = db.query(Transaction)
    if party == Party.SENDER:
        query = query.filter(Transaction.sender_id == caller.id)
    elif party == Party.RECEIVER:
        query = query.filter(Transaction.receiver_id == caller.id)
    else:
        query = query.filter(or_(
            Transaction.sender_id == caller.id,
            Transaction.receiver_id == caller.id,
        ))
    if status is not None:
        query = query.filter(Transaction.status == status)
    return query.order_by(Transaction.created_at.desc()).offset(offset).limit(limit).all()
