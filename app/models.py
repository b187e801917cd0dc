import enum
import secrets
import string
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)

from app.database import Base

TXN_NUMBER_ALPHABET = string.ascii_uppercase + string.digits


def utcnow() -> datetime:
    """Naive UTC timestamp; every DateTime column stores naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def generate_id():
    return f"txn_{uuid.uuid4().hex}"


def generate_user_id():
    return f"usr_{uuid.uuid4().hex[:12]}"


def generate_transaction_number():
    return "TXN" + "".join(secrets.choice(TXN_NUMBER_ALPHABET) for _ in range(10))


class TransactionStatus(str, enum.Enum):
    INITIATED = "INITIATED"
    QR1_SCANNED = "QR1_SCANNED"
    QR2_GENERATED = "QR2_GENERATED"
    QR2_SCANNED = "QR2_SCANNED"
    OTP_SENT = "OTP_SENT"
    OTP_VERIFIED = "OTP_VERIFIED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class OTPPurpose(str, enum.Enum):
    LOGIN = "login"
    TRANSACTION = "transaction"
    VERIFICATION = "verification"


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=generate_user_id)
    external_id = Column(String, nullable=True, unique=True, index=True)
    phone = Column(String(20), nullable=True, unique=True, index=True)
    email = Column(String, nullable=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    company_id = Column(String, nullable=True, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def display_name(self) -> str:
        name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return name or self.phone or self.id


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(String, primary_key=True, default=generate_id)
    transaction_number = Column(String(16), nullable=False, unique=True,
                                default=generate_transaction_number)
    sender_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    receiver_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    company_id = Column(String, nullable=True, index=True)

    amount = Column(Numeric(18, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="INR")
    description = Column(String, nullable=True)

    status = Column(Enum(TransactionStatus), nullable=False,
                    default=TransactionStatus.INITIATED, index=True)
    failure_reason = Column(String, nullable=True)

    # Shared by QR1 and QR2; never serialized to clients
    encryption_key = Column(String(64), nullable=False)
    iv = Column(String(32), nullable=False)

    qr1_code = Column(Text, nullable=True)
    qr1_encrypted_data = Column(Text, nullable=True, index=True)
    qr1_generated_at = Column(DateTime, nullable=True)
    qr1_expires_at = Column(DateTime, nullable=True)

    qr2_code = Column(Text, nullable=True)
    qr2_encrypted_data = Column(Text, nullable=True, index=True)
    qr2_generated_at = Column(DateTime, nullable=True)
    qr2_expires_at = Column(DateTime, nullable=True)

    otp_sent_at = Column(DateTime, nullable=True)
    otp_verified_at = Column(DateTime, nullable=True)
    otp_attempts = Column(Integer, nullable=False, default=0)

    initiated_at = Column(DateTime, nullable=False, default=utcnow)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class OTPRecord(Base):
    __tablename__ = "otp_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    phone = Column(String(20), nullable=False, index=True)
    otp_hash = Column(String(64), nullable=False)
    purpose = Column(Enum(OTPPurpose), nullable=False)
    transaction_id = Column(String, ForeignKey("transactions.id"), nullable=True, index=True)
    is_verified = Column(Boolean, nullable=False, default=False)
    verified_at = Column(DateTime, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class TransactionLog(Base):
    __tablename__ = "transaction_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    transaction_id = Column(String, ForeignKey("transactions.id"), nullable=False, index=True)
    action = Column(String, nullable=False)
    status = Column(Enum(TransactionStatus), nullable=False)
    actor_id = Column(String, nullable=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    company_id = Column(String, nullable=True)
    title = Column(String, nullable=False)
    message = Column(String, nullable=False)
    category = Column(String, nullable=False, default="TRANSACTION")
    priority = Column(String, nullable=False, default="NORMAL")
    action_url = Column(String, nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
