"""
auth/service.py -- The login / registration state machine.

Each attempt moves through RECEIVED -> VALIDATED -> CREDENTIAL_CHECKED ->
TERMINAL. Failure can end the attempt at any step; the terminal step is where
the one and only audit record for the attempt is written.

Flow contract:
  - The step functions (_login, _register) either return the authenticated
    user or raise an AuthError subclass. They never audit.
  - login() / register() are the boundary. They catch AuthError and every
    other exception, audit exactly once, and return an AuthResult. Nothing
    escapes them. Unexpected exceptions are logged with traceback and reported
    as server_error; the client only ever sees a generic message.
  - Side effects that can fail (counter increment, token signing) happen
    before the audit call, so a failure there is itself audited as
    server_error instead of producing a second record.

Anti-enumeration: unknown username and wrong password both raise
AuthenticationError, whose message is identical. The audit detail keeps the
distinct reason.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from sqlalchemy.exc import IntegrityError

from auth.audit import AuditRecorder
from auth.errors import AuthenticationError, AuthError, ConflictError, InternalError, ValidationError
from auth.models import (
    DEFAULT_ROLE_NAME,
    ActionStatus,
    ActionType,
    AuditEvent,
    FailureReason,
    RequestOrigin,
    UserCredential,
)
from auth.passwords import burn_verification, hash_password, password_too_long, verify_password
from auth.store import CredentialStore
from auth.tokens import issue_token
from core.config import get_settings

logger = logging.getLogger("bankauth.auth")

LOGIN_MISSING_MESSAGE = "Username and password are required"
REGISTER_MISSING_MESSAGE = "Username, email and password are required"
USERNAME_TAKEN_MESSAGE = "This username is already taken"
EMAIL_TAKEN_MESSAGE = "This email is already registered"
PASSWORD_TOO_LONG_MESSAGE = "Password must be at most 72 bytes long"
LOGIN_SERVER_ERROR_MESSAGE = "Server error during login"
REGISTER_SERVER_ERROR_MESSAGE = "Server error during registration"
MALFORMED_INPUT_MESSAGE = "Request contains characters that are not valid text"


class AuthState(str, Enum):
    RECEIVED = "received"
    VALIDATED = "validated"
    CREDENTIAL_CHECKED = "credential_checked"
    TERMINAL = "terminal"


@dataclass
class AuthResult:
    """Terminal outcome of one attempt, ready to be serialized by the route."""

    status_code: int
    success: bool
    message: str | None = None
    token: str | None = None
    user: UserCredential | None = None
    reason: FailureReason | None = None

    @property
    def role_name(self) -> str:
        if self.user is None or not self.user.role_name:
            return DEFAULT_ROLE_NAME
        return self.user.role_name


@dataclass
class _Attempt:
    """Mutable bookkeeping for one attempt. Never leaves this module."""

    action: ActionType
    origin: RequestOrigin
    details: dict[str, Any] = field(default_factory=dict)
    state: AuthState = AuthState.RECEIVED
    user_id: int | None = None

    def advance(self, state: AuthState) -> None:
        logger.debug("%s attempt %s -> %s", self.action.value, self.state.value, state.value)
        self.state = state


def _blank(value: str | None) -> bool:
    return value is None or not value.strip()


def _unencodable(*values: str | None) -> bool:
    """True if any value holds code points UTF-8 cannot carry (lone surrogates)."""
    for value in values:
        if value is None:
            continue
        try:
            value.encode("utf-8")
        except UnicodeEncodeError:
            return True
    return False


def _printable(value: str | None) -> str | None:
    """Audit-safe copy of client input: unencodable code points become escapes."""
    if value is None:
        return None
    return value.encode("utf-8", "backslashreplace").decode("utf-8")


class AuthService:
    """Orchestrates credential checks, token issue and auditing.

    Collaborators are injected so tests can substitute any of them.
    """

    def __init__(self, store: CredentialStore, recorder: AuditRecorder) -> None:
        self.store = store
        self.recorder = recorder

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, username: str | None, password: str | None, origin: RequestOrigin) -> AuthResult:
        """Authenticate username/password. Always returns; always audits once."""
        attempt = _Attempt(ActionType.LOGIN, origin, details={"username": _printable(username)})
        try:
            user = self._login(attempt, username, password)
            token = issue_token(user)
        except AuthError as exc:
            return self._fail(attempt, exc)
        except Exception as exc:
            logger.exception("Login error username=%s ip=%s", username, origin.ip_address)
            attempt.details["error"] = type(exc).__name__
            return self._fail(attempt, InternalError(LOGIN_SERVER_ERROR_MESSAGE))

        logger.info("Login successful user_id=%s username=%s ip=%s", user.id, username, origin.ip_address)
        return self._succeed(attempt, user, token, status_code=200)

    def _login(self, attempt: _Attempt, username: str | None, password: str | None) -> UserCredential:
        if _blank(username) or not password:
            logger.warning("Login attempt: missing credentials username=%s ip=%s", username, attempt.origin.ip_address)
            raise ValidationError(FailureReason.MISSING_CREDENTIALS, LOGIN_MISSING_MESSAGE)
        if _unencodable(username, password):
            logger.warning("Login attempt: malformed input username=%r ip=%s", username, attempt.origin.ip_address)
            raise ValidationError(FailureReason.MALFORMED_INPUT, MALFORMED_INPUT_MESSAGE)
        attempt.advance(AuthState.VALIDATED)

        user = self.store.find_by_username(username)
        if user is None:
            # Same bcrypt cost as a real check so timing does not reveal the miss.
            burn_verification(password)
            logger.warning("Login failed: user not found username=%s ip=%s", username, attempt.origin.ip_address)
            raise AuthenticationError(FailureReason.USER_NOT_FOUND)
        attempt.user_id = user.id

        matched = verify_password(password, user.password_hash)
        attempt.advance(AuthState.CREDENTIAL_CHECKED)
        if not matched:
            logger.warning(
                "Login failed: invalid password user_id=%s username=%s ip=%s",
                user.id,
                username,
                attempt.origin.ip_address,
            )
            self.store.increment_failed_attempts(user.id)
            raise AuthenticationError(FailureReason.INVALID_PASSWORD)

        self.store.record_successful_login(user.id)
        refreshed = self.store.find_by_id(user.id)
        return refreshed if refreshed is not None else user

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self,
        username: str | None,
        email: str | None,
        password: str | None,
        origin: RequestOrigin,
        full_name: str | None = None,
        phone_number: str | None = None,
    ) -> AuthResult:
        """Create an account and sign the new user in. Always returns; always audits once."""
        attempt = _Attempt(
            ActionType.REGISTER,
            origin,
            details={"username": _printable(username), "email": _printable(email)},
        )
        try:
            user = self._register(attempt, username, email, password, full_name, phone_number)
            token = issue_token(user)
        except AuthError as exc:
            return self._fail(attempt, exc)
        except Exception as exc:
            logger.exception("Register error username=%s email=%s ip=%s", username, email, origin.ip_address)
            attempt.details["error"] = type(exc).__name__
            return self._fail(attempt, InternalError(REGISTER_SERVER_ERROR_MESSAGE))

        logger.info(
            "Registration successful user_id=%s username=%s email=%s ip=%s",
            user.id,
            username,
            email,
            origin.ip_address,
        )
        return self._succeed(attempt, user, token, status_code=201)

    def _register(
        self,
        attempt: _Attempt,
        username: str | None,
        email: str | None,
        password: str | None,
        full_name: str | None,
        phone_number: str | None,
    ) -> UserCredential:
        if _blank(username) or _blank(email) or not password:
            logger.warning(
                "Register attempt: missing fields username=%s email=%s ip=%s",
                username,
                email,
                attempt.origin.ip_address,
            )
            raise ValidationError(FailureReason.MISSING_FIELDS, REGISTER_MISSING_MESSAGE)
        if _unencodable(username, email, password, full_name, phone_number):
            logger.warning(
                "Register attempt: malformed input username=%r email=%r ip=%s",
                username,
                email,
                attempt.origin.ip_address,
            )
            raise ValidationError(FailureReason.MALFORMED_INPUT, MALFORMED_INPUT_MESSAGE)
        if password_too_long(password):
            logger.warning("Register attempt: password too long username=%s ip=%s", username, attempt.origin.ip_address)
            raise ValidationError(FailureReason.PASSWORD_TOO_LONG, PASSWORD_TOO_LONG_MESSAGE)
        # Addresses are unique regardless of case.
        email = email.strip().lower()
        attempt.details["email"] = email
        attempt.advance(AuthState.VALIDATED)

        self._check_unique(attempt, username, email)

        new_user = UserCredential(
            username=username,
            email=email,
            password_hash=hash_password(password),
            full_name=full_name or None,
            phone_number=phone_number or None,
            role_id=get_settings().default_role_id,
        )
        try:
            user_id = self.store.insert_user(new_user)
        except IntegrityError:
            # Lost a race with a concurrent registration; name the collision.
            self._check_unique(attempt, username, email)
            raise
        attempt.advance(AuthState.CREDENTIAL_CHECKED)
        attempt.user_id = user_id

        created = self.store.find_by_id(user_id)
        if created is None:
            raise RuntimeError(f"user {user_id} missing after insert")
        return created

    def _check_unique(self, attempt: _Attempt, username: str, email: str) -> None:
        """Raise ConflictError if either key is taken. Username wins when both are."""
        existing = self.store.find_by_username_or_email(username, email)
        if any(u.username == username for u in existing):
            logger.warning("Register failed: username exists username=%s ip=%s", username, attempt.origin.ip_address)
            raise ConflictError(FailureReason.USERNAME_EXISTS, USERNAME_TAKEN_MESSAGE)
        if any(u.email == email for u in existing):
            logger.warning("Register failed: email exists email=%s ip=%s", email, attempt.origin.ip_address)
            raise ConflictError(FailureReason.EMAIL_EXISTS, EMAIL_TAKEN_MESSAGE)

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    def _succeed(self, attempt: _Attempt, user: UserCredential, token: str, status_code: int) -> AuthResult:
        attempt.advance(AuthState.TERMINAL)
        self._audit(attempt, ActionStatus.SUCCESS, user_id=user.id)
        return AuthResult(status_code=status_code, success=True, token=token, user=user)

    def _fail(self, attempt: _Attempt, exc: AuthError) -> AuthResult:
        attempt.advance(AuthState.TERMINAL)
        attempt.details["reason"] = exc.reason.value
        self._audit(attempt, ActionStatus.FAILURE, user_id=attempt.user_id)
        return AuthResult(status_code=exc.status_code, success=False, message=exc.message, reason=exc.reason)

    def _audit(self, attempt: _Attempt, status: ActionStatus, user_id: int | None) -> None:
        details = {k: v for k, v in attempt.details.items() if v is not None}
        event = AuditEvent(
            action_type=attempt.action,
            status=status,
            user_id=user_id,
            ip_address=attempt.origin.ip_address,
            user_agent=attempt.origin.user_agent,
            details=details or None,
        )
        try:
            self.recorder.record(event)
        except Exception:
            # A substitute recorder may raise; the response stays unchanged.
            logger.exception("Audit dispatch failed action=%s status=%s", attempt.action.value, status.value)
