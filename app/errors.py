"""
Error taxonomy for the authorization core.

Services raise these; the HTTP layer maps every subclass to a structured
`ErrorResponse` using `status_code` and `code`. Nothing here is retried
automatically.
"""
from typing import Optional


class AuthorizationServiceError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthenticationError(AuthorizationServiceError):
    status_code = 401
    code = "unauthenticated"


class AuthorizationError(AuthorizationServiceError):
    status_code = 403
    code = "forbidden"


class NotFoundError(AuthorizationServiceError):
    status_code = 404
    code = "not_found"


class ValidationError(AuthorizationServiceError):
    status_code = 400
    code = "validation_error"


class InvalidTransitionError(AuthorizationServiceError):
    status_code = 409
    code = "invalid_transition"

    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(
            f"Invalid status transition from {_name(current)} to {_name(target)}"
        )


class PrerequisiteError(AuthorizationServiceError):
    status_code = 409
    code = "prerequisite_missing"

    def __init__(self, target, artifact: str, message: str):
        self.target = target
        self.artifact = artifact
        super().__init__(message)


class DecryptionError(AuthorizationServiceError):
    code = "decryption_failed"


class InvalidQRError(AuthorizationServiceError):
    status_code = 400
    code = "invalid_qr"


class ExpiredTokenError(AuthorizationServiceError):
    status_code = 410
    code = "token_expired"


class OTPExpiredError(ExpiredTokenError):
    code = "otp_expired"


class OTPNotFoundError(AuthorizationServiceError):
    """`attempts` is the record's committed count after a wrong code, else None."""
    status_code = 400
    code = "otp_invalid"

    def __init__(self, message: str, attempts: Optional[int] = None):
        super().__init__(message)
        self.attempts = attempts


class MaxAttemptsExceededError(AuthorizationServiceError):
    status_code = 429
    code = "otp_attempts_exceeded"

    def __init__(self, message: str, attempts: Optional[int] = None):
        super().__init__(message)
        self.attempts = attempts


class ConcurrentModificationError(AuthorizationServiceError):
    status_code = 409
    code = "concurrent_modification"


def _name(status) -> str:
    return getattr(status, "value", str(status))
