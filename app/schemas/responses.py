from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class InitiateResponse(BaseModel):
    transaction_id: str
    transaction_number: str
    amount: Decimal
    currency: str
    status: str
    qr1_image: str
    qr1_expires_at: datetime
    message: str = "Transaction initiated. Show QR code to receiver."


class StepResponse(BaseModel):
    transaction_id: str
    transaction_number: str
    status: str
    next_expected_status: Optional[str] = None
    message: str


class QR2Response(BaseModel):
    transaction_id: str
    transaction_number: str
    status: str
    qr2_image: str
    qr2_expires_at: datetime
    message: str = "QR2 generated successfully. Show to sender."


class OTPSentResponse(BaseModel):
    transaction_id: str
    status: str
    expires_at: datetime
    expires_in: int
    message: str = "OTP sent successfully"


class CompleteResponse(BaseModel):
    transaction_id: str
    transaction_number: str
    status: str
    completed_at: datetime
    message: str = "Payment completed successfully!"


class TransactionLogEntry(BaseModel):
    action: str
    status: str
    actor_id: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    created_at: datetime


class TransactionSummary(BaseModel):
    transaction_id: str
    transaction_number: str
    sender_id: str
    receiver_id: str
    amount: Decimal
    currency: str
    status: str
    created_at: datetime


class TransactionDetail(TransactionSummary):
    company_id: Optional[str] = None
    description: Optional[str] = None
    failure_reason: Optional[str] = None
    next_expected_status: Optional[str] = None
    qr1_expires_at: Optional[datetime] = None
    qr1_remaining_seconds: int = 0
    qr2_expires_at: Optional[datetime] = None
    qr2_remaining_seconds: int = 0
    otp_sent_at: Optional[datetime] = None
    otp_verified_at: Optional[datetime] = None
    otp_attempts: int = 0
    initiated_at: datetime
    completed_at: Optional[datetime] = None
    updated_at: datetime
    logs: List[TransactionLogEntry] = []


class TransactionList(BaseModel):
    count: int
    transactions: List[TransactionSummary]


class LoginOTPSentResponse(BaseModel):
    expires_at: datetime
    expires_in: int
    message: str = "OTP sent successfully"


class LoginOTPVerifiedResponse(BaseModel):
    verified: bool
    user_id: str


class WebhookAck(BaseModel):
    status: str
    user_id: Optional[str] = None


class ErrorResponse(BaseModel):
    error: str
    detail: Optional[str] = None
