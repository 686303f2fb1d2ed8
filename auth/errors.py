"""
auth/errors.py -- Error taxonomy for the authentication flow.

Every error carries the HTTP status it maps to, the audit reason code and the
message the client sees. The auth service raises these internally and turns
them into results at its own boundary; only RateLimitError travels up to the
api/ exception handlers.

AuthenticationError has exactly one user-facing message for both the
unknown-user and wrong-password cases. The reason code differs, the message
must not.
"""

from __future__ import annotations

from auth.models import FailureReason

INVALID_CREDENTIALS_MESSAGE = "Invalid username or password"


class AuthError(Exception):
    status_code: int = 500
    message: str = "Internal server error"

    def __init__(self, reason: FailureReason, message: str | None = None) -> None:
        self.reason = reason
        if message is not None:
            self.message = message
        super().__init__(self.message)


class ValidationError(AuthError):
    """Missing or malformed input."""

    status_code = 400
    message = "Invalid request"


class AuthenticationError(AuthError):
    """Unknown user or wrong password. The message never says which."""

    status_code = 401
    message = INVALID_CREDENTIALS_MESSAGE

    def __init__(self, reason: FailureReason) -> None:
        super().__init__(reason, INVALID_CREDENTIALS_MESSAGE)


class ConflictError(AuthError):
    """Registration collided with an existing username or email."""

    status_code = 400
    message = "Account already exists"


class InternalError(AuthError):
    """Anything unexpected: store unreachable, hashing or signing failure."""

    status_code = 500

    def __init__(self, message: str = "Internal server error") -> None:
        super().__init__(FailureReason.SERVER_ERROR, message)


class RateLimitError(Exception):
    """A client exceeded a traffic-class ceiling. Logged, never audited."""

    status_code = 429

    def __init__(self, traffic_class: str, message: str, retry_after: int) -> None:
        self.traffic_class = traffic_class
        self.message = message
        self.retry_after = retry_after
        super().__init__(message)
