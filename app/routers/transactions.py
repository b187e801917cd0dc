from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app import models
from app.database import get_db
from app.dependencies import get_current_user
from app.models import TransactionStatus
from app.schemas.requests import (
    CancelRequest,
    InitiateRequest,
    ScanQRRequest,
    TransactionRefRequest,
    VerifyOTPRequest,
)
from app.schemas.responses import (
    CompleteResponse,
    InitiateResponse,
    OTPSentResponse,
    QR2Response,
    StepResponse,
    TransactionDetail,
    TransactionList,
    TransactionLogEntry,
    TransactionSummary,
)
from app.services import qr as qr_service
from app.services import state_machine
from app.services import transactions as service
from app.services.authorization import Party

router = APIRouter()


def _next(status) -> Optional[str]:
    nxt = state_machine.next_expected(status)
    return nxt.value if nxt else None


def _step(txn: models.Transaction, message: str) -> StepResponse:
    return StepResponse(
        transaction_id=txn.id,
        transaction_number=txn.transaction_number,
        status=txn.status.value,
        next_expected_status=_next(txn.status),
        message=message,
    )


def _summary_fields(txn: models.Transaction) -> dict:
    return dict(
        transaction_id=txn.id,
        transaction_number=txn.transaction_number,
        sender_id=txn.sender_id,
        receiver_id=txn.receiver_id,
        amount=txn.amount,
        currency=txn.currency,
        status=txn.status.value,
        created_at=txn.created_at,
    )


@router.post("/initiate", response_model=InitiateResponse, status_code=201)
def initiate(
    request: InitiateRequest,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Start a transaction as the sender and mint QR1 for the receiver to scan.
    """
    txn = service.initiate(
        user, request.receiver_phone, request.amount, request.currency, db,
        description=request.description,
    )
    return InitiateResponse(
        transaction_id=txn.id,
        transaction_number=txn.transaction_number,
        amount=txn.amount,
        currency=txn.currency,
        status=txn.status.value,
        qr1_image=txn.qr1_code,
        qr1_expires_at=txn.qr1_expires_at,
    )


@router.post("/scan-qr1", response_model=StepResponse)
def scan_qr1(
    request: ScanQRRequest,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Receiver scans QR1. An expired code fails the transaction."""
    txn = service.scan_qr1(user, request.qr_code, db)
    return _step(txn, "QR code validated. Ready to generate QR2.")


@router.post("/generate-qr2", response_model=QR2Response)
def generate_qr2(
    request: TransactionRefRequest,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    txn = service.generate_qr2(user, request.transaction_id, db)
    return QR2Response(
        transaction_id=txn.id,
        transaction_number=txn.transaction_number,
        status=txn.status.value,
        qr2_image=txn.qr2_code,
        qr2_expires_at=txn.qr2_expires_at,
    )


@router.post("/scan-qr2", response_model=StepResponse)
def scan_qr2(
    request: ScanQRRequest,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Sender scans QR2. An expired code fails the transaction."""
    txn = service.scan_qr2(user, request.qr_code, db)
    return _step(txn, "QR2 validated. Request an OTP to confirm.")


@router.post("/send-otp", response_model=OTPSentResponse)
def send_otp(
    request: TransactionRefRequest,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    txn, dispatch = service.send_otp(user, request.transaction_id, db)
    return OTPSentResponse(
        transaction_id=txn.id,
        status=txn.status.value,
        expires_at=dispatch.expires_at,
        expires_in=dispatch.expires_in,
    )


@router.post("/verify-otp", response_model=StepResponse)
def verify_otp(
    request: VerifyOTPRequest,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Sender submits the OTP. Three wrong codes, or an expired code, fail the
    transaction.
    """
    txn = service.verify_otp(user, request.transaction_id, request.otp, db)
    return _step(txn, "OTP verified. Complete the payment to finish.")


@router.post("/{transaction_id}/complete", response_model=CompleteResponse)
def complete(
    transaction_id: str,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    txn = service.complete(user, transaction_id, db)
    return CompleteResponse(
        transaction_id=txn.id,
        transaction_number=txn.transaction_number,
        status=txn.status.value,
        completed_at=txn.completed_at,
    )


@router.post("/{transaction_id}/cancel", response_model=StepResponse)
def cancel(
    transaction_id: str,
    request: Optional[CancelRequest] = None,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    reason = request.reason if request else None
    txn = service.cancel(user, transaction_id, db, reason=reason)
    return _step(txn, "Transaction cancelled.")


@router.get("/{transaction_id}", response_model=TransactionDetail)
def get_transaction(
    transaction_id: str,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Snapshot for either party, with the latest audit entries."""
    txn = service.get_transaction(user, transaction_id, db)
    logs = [
        TransactionLogEntry(
            action=log.action,
            status=log.status.value,
            actor_id=log.actor_id,
            details=log.details,
            created_at=log.created_at,
        )
        for log in service.recent_logs(txn.id, db)
    ]
    return TransactionDetail(
        **_summary_fields(txn),
        company_id=txn.company_id,
        description=txn.description,
        failure_reason=txn.failure_reason,
        next_expected_status=_next(txn.status),
        qr1_expires_at=txn.qr1_expires_at,
        qr1_remaining_seconds=qr_service.window_remaining(txn.qr1_expires_at),
        qr2_expires_at=txn.qr2_expires_at,
        qr2_remaining_seconds=qr_service.window_remaining(txn.qr2_expires_at),
        otp_sent_at=txn.otp_sent_at,
        otp_verified_at=txn.otp_verified_at,
        otp_attempts=txn.otp_attempts,
        initiated_at=txn.initiated_at,
        completed_at=txn.completed_at,
        updated_at=txn.updated_at,
        logs=logs,
    )


@router.get("", response_model=TransactionList)
def list_transactions(
    status: Optional[TransactionStatus] = None,
    role: Optional[Party] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    txns = service.list_transactions(user, db, status=status, party=role,
                                     limit=limit, offset=offset)
    return TransactionList(
        count=len(txns),
        transactions=[TransactionSummary(**_summary_fields(t)) for t in txns],
    )
