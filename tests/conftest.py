"""
Shared pytest fixtures for all test modules.

Uses an in-memory SQLite database (StaticPool) so every test
function gets a clean, isolated database with nothing written to disk.
"""
import pytest
from decimal import Decimal
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from typing import Optional

from app.config import settings
from app.database import Base, get_db
from app import models
from app.models import TransactionStatus
from app.services import otp as otp_module
from app.services import transactions as service


# ---------------------------------------------------------------------------
# In-memory database engine shared across all fixtures in a test session.
# StaticPool forces all SQLAlchemy connections to reuse the same underlying
# sqlite3 connection, which is required for in-memory SQLite.
# ---------------------------------------------------------------------------
TEST_ENGINE = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=TEST_ENGINE)

SENDER_PHONE = "+919876543210"
RECEIVER_PHONE = "+919876543211"
STRANGER_PHONE = "+919876543299"
KNOWN_OTP = "482913"


@pytest.fixture(autouse=True)
def reset_db():
    """Drop and recreate all tables before each test for full isolation."""
    Base.metadata.drop_all(bind=TEST_ENGINE)
    Base.metadata.create_all(bind=TEST_ENGINE)
    yield
    Base.metadata.drop_all(bind=TEST_ENGINE)


@pytest.fixture
def db(reset_db):
    """Yield a SQLAlchemy session backed by the in-memory test database."""
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(db):
    """
    FastAPI TestClient with the real DB dependency overridden to use
    the in-memory test session.  The TestClient is NOT used as a context
    manager so the lifespan hook (which creates the on-disk DB) is skipped.
    """
    from app.main import app

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def file_sessions(tmp_path):
    """
    Session factory on a file-backed SQLite database. Each session gets its
    own sqlite3 connection, so threads really contend for the same rows.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'race.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture(autouse=True)
def no_sms(monkeypatch):
    """Tests never reach SNS unless they patch credentials in themselves."""
    monkeypatch.setattr(settings, "aws_access_key_id", None)
    monkeypatch.setattr(settings, "aws_secret_access_key", None)


@pytest.fixture
def fixed_otp(monkeypatch):
    """Every OTP issued during the test is KNOWN_OTP."""
    monkeypatch.setattr(otp_module, "generate_code", lambda: KNOWN_OTP)
    return KNOWN_OTP


@pytest.fixture
def sender(db):
    return make_user(db, "usr_sender", SENDER_PHONE, company_id="co_acme")


@pytest.fixture
def receiver(db):
    return make_user(db, "usr_receiver", RECEIVER_PHONE, company_id="co_acme")


@pytest.fixture
def stranger(db):
    return make_user(db, "usr_stranger", STRANGER_PHONE)


# ---------------------------------------------------------------------------
# Helpers, not fixtures, so any test file can import and call them directly.
# ---------------------------------------------------------------------------
def make_user(
    db,
    user_id: str,
    phone: Optional[str],
    first_name: str = "Test",
    last_name: str = "User",
    company_id: Optional[str] = None,
    is_active: bool = True,
) -> models.User:
    user = models.User(
        id=user_id,
        phone=phone,
        first_name=first_name,
        last_name=last_name,
        company_id=company_id,
        is_active=is_active,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def auth(user) -> dict:
    return {"X-User-Id": user.id}


def advance(
    db,
    sender: models.User,
    receiver: models.User,
    target: TransactionStatus,
    amount: Decimal = Decimal("500"),
    code: str = KNOWN_OTP,
) -> models.Transaction:
    """
    Drive a fresh transaction along the happy path until it reaches target.
    Steps past OTP_SENT need the fixed_otp fixture active.
    """
    steps = [
        TransactionStatus.QR1_SCANNED,
        TransactionStatus.QR2_GENERATED,
        TransactionStatus.QR2_SCANNED,
        TransactionStatus.OTP_SENT,
        TransactionStatus.OTP_VERIFIED,
        TransactionStatus.COMPLETED,
    ]
    txn = service.initiate(sender, receiver.phone, amount, "INR", db)
    for step in steps:
        if txn.status == target:
            break
        if step == TransactionStatus.QR1_SCANNED:
            txn = service.scan_qr1(receiver, txn.qr1_encrypted_data, db)
        elif step == TransactionStatus.QR2_GENERATED:
            txn = service.generate_qr2(receiver, txn.id, db)
        elif step == TransactionStatus.QR2_SCANNED:
            txn = service.scan_qr2(sender, txn.qr2_encrypted_data, db)
        elif step == TransactionStatus.OTP_SENT:
            txn, _ = service.send_otp(sender, txn.id, db)
        elif step == TransactionStatus.OTP_VERIFIED:
            txn = service.verify_otp(sender, txn.id, code, db)
        elif step == TransactionStatus.COMPLETED:
            txn = service.complete(sender, txn.id, db)
    assert txn.status == target
    return txn
