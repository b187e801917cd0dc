from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.database import get_db
from app.models import OTPPurpose
from app.schemas.requests import PhoneOTPRequest, PhoneOTPVerifyRequest
from app.schemas.responses import LoginOTPSentResponse, LoginOTPVerifiedResponse
from app.services import directory, otp

router = APIRouter()


@router.post("/send", response_model=LoginOTPSentResponse)
def send_login_otp(request: PhoneOTPRequest, db: Session = Depends(get_db)):
    """Text a login code to a registered, active phone number."""
    directory.require_active_by_phone(request.phone, db)
    dispatch = otp.send(request.phone, OTPPurpose.LOGIN, db)
    return LoginOTPSentResponse(expires_at=dispatch.expires_at, expires_in=dispatch.expires_in)


@router.post("/verify", response_model=LoginOTPVerifiedResponse)
def verify_login_otp(request: PhoneOTPVerifyRequest, db: Session = Depends(get_db)):
    user = directory.require_active_by_phone(request.phone, db)
    otp.verify(request.phone, request.otp, OTPPurpose.LOGIN, db)
    return LoginOTPVerifiedResponse(verified=True, user_id=user.id)
