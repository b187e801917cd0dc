import re
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from app.services.otp import OTP_LENGTH

E164 = re.compile(r"^\+[1-9]\d{1,14}$")


def _check_phone(value: str) -> str:
    if not E164.match(value):
        raise ValueError("phone must be in E.164 format, e.g. +919876543210")
    return value


def _check_otp(value: str) -> str:
    if len(value) != OTP_LENGTH or not value.isdigit():
        raise ValueError(f"otp must be {OTP_LENGTH} digits")
    return value


class InitiateRequest(BaseModel):
    receiver_phone: str
    amount: Decimal
    currency: str = "INR"
    description: Optional[str] = Field(default=None, max_length=500)

    @field_validator("receiver_phone")
    @classmethod
    def validate_phone(cls, v):
        return _check_phone(v)

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v):
        if v <= 0:
            raise ValueError("amount must be positive")
        if v.as_tuple().exponent < -2:
            raise ValueError("amount supports at most 2 decimal places")
        return v

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v):
        if len(v) != 3 or not v.isalpha():
            raise ValueError("currency must be a 3-letter ISO code")
        return v.upper()


class ScanQRRequest(BaseModel):
    qr_code: str = Field(..., min_length=1)


class TransactionRefRequest(BaseModel):
    transaction_id: str = Field(..., min_length=1)


class VerifyOTPRequest(BaseModel):
    transaction_id: str = Field(..., min_length=1)
    otp: str

    @field_validator("otp")
    @classmethod
    def validate_otp(cls, v):
        return _check_otp(v)


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=255)


class PhoneOTPRequest(BaseModel):
    phone: str

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v):
        return _check_phone(v)


class PhoneOTPVerifyRequest(PhoneOTPRequest):
    otp: str

    @field_validator("otp")
    @classmethod
    def validate_otp(cls, v):
        return _check_otp(v)
