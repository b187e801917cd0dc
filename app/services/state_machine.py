"""
Transaction status machine.

Two independent gates guard every status change:

1. The transition table: which statuses may follow the current one.
2. Prerequisites: which artifacts (QR timestamps, OTP timestamps) must already
   exist for the target status. This catches skip-ahead writes that a table
   check alone would let through.

apply() runs both and raises without touching the transaction; persisting the
new status is the caller's job. Who may request a step is decided in the
orchestration layer, not here.
"""
from typing import Optional, Tuple

from app.errors import InvalidTransitionError, PrerequisiteError
from app.models import TransactionStatus as S

TRANSITIONS = {
    S.INITIATED: frozenset({S.QR1_SCANNED, S.CANCELLED}),
    S.QR1_SCANNED: frozenset({S.QR2_GENERATED, S.CANCELLED}),
    S.QR2_GENERATED: frozenset({S.QR2_SCANNED, S.CANCELLED}),
    S.QR2_SCANNED: frozenset({S.OTP_SENT, S.CANCELLED}),
    S.OTP_SENT: frozenset({S.OTP_VERIFIED, S.FAILED, S.CANCELLED}),
    S.OTP_VERIFIED: frozenset({S.COMPLETED, S.FAILED, S.CANCELLED}),
    S.COMPLETED: frozenset(),
    S.FAILED: frozenset(),
    S.CANCELLED: frozenset(),
}

TERMINAL = frozenset({S.COMPLETED, S.FAILED, S.CANCELLED})

# Happy-path order, used only for user guidance
HAPPY_PATH = (
    S.INITIATED,
    S.QR1_SCANNED,
    S.QR2_GENERATED,
    S.QR2_SCANNED,
    S.OTP_SENT,
    S.OTP_VERIFIED,
    S.COMPLETED,
)

# target -> ((attribute, message), ...), checked in order
PREREQUISITES = {
    S.QR2_GENERATED: (
        ("qr1_generated_at", "QR1 must be generated before QR2"),
    ),
    S.OTP_SENT: (
        ("qr2_generated_at", "QR2 must be generated before sending OTP"),
    ),
    S.OTP_VERIFIED: (
        ("qr1_generated_at", "QR1 must be scanned before verifying OTP"),
        ("qr2_generated_at", "QR2 must be scanned before verifying OTP"),
        ("otp_sent_at", "OTP must be sent before verification"),
    ),
    S.COMPLETED: (
        ("otp_verified_at", "OTP must be verified before completion"),
        ("qr1_generated_at", "QR1 must be scanned"),
        ("qr2_generated_at", "QR2 must be generated and scanned"),
    ),
}


def _status(value) -> S:
    return value if isinstance(value, S) else S(value)


def is_valid_transition(current, target) -> bool:
    return _status(target) in TRANSITIONS[_status(current)]


def is_terminal(status) -> bool:
    return _status(status) in TERMINAL


def missing_prerequisite(transaction, target) -> Optional[Tuple[str, str]]:
    """First (artifact, message) not yet present for target, or None."""
    for attribute, message in PREREQUISITES.get(_status(target), ()):
        if getattr(transaction, attribute, None) is None:
            return attribute, message
    return None


def check_prerequisites(transaction, target) -> None:
    missing = missing_prerequisite(transaction, target)
    if missing:
        raise PrerequisiteError(_status(target), missing[0], missing[1])


def apply(transaction, target) -> S:
    """
    Validate moving transaction to target.

    Order: terminal status, then prerequisites, then the table. A caller asking
    for OTP_SENT before QR2 exists learns which artifact is missing rather
    than only that the jump is illegal.

    Raises:
        InvalidTransitionError: transaction is terminal or target is not
            reachable from the current status
        PrerequisiteError: a required artifact has not been produced
    """
    current = _status(transaction.status)
    target = _status(target)
    if current in TERMINAL:
        raise InvalidTransitionError(current, target)
    check_prerequisites(transaction, target)
    if not is_valid_transition(current, target):
        raise InvalidTransitionError(current, target)
    return target


def can_force_fail(status) -> bool:
    """Expiry and attempt exhaustion may fail any transaction not yet terminal."""
    return not is_terminal(status)


def next_expected(current) -> Optional[S]:
    """Happy-path successor of current; None once terminal."""
    current = _status(current)
    if current in TERMINAL:
        return None
    return HAPPY_PATH[HAPPY_PATH.index(current) + 1]
