"""
auth/models.py -- Domain dataclasses and enums for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; the store, the audit recorder and the auth service do the work.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# Role name echoed in responses when the user row has no matching role row.
DEFAULT_ROLE_NAME = "user"


class ActionType(str, Enum):
    LOGIN = "LOGIN"
    REGISTER = "REGISTER"
    AUDIT_QUERY = "AUDIT_QUERY"


class ActionStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class FailureReason(str, Enum):
    """Reason codes stored in audit details. Never shown to the client verbatim."""

    MISSING_CREDENTIALS = "missing_credentials"
    MISSING_FIELDS = "missing_fields"
    USER_NOT_FOUND = "user_not_found"
    INVALID_PASSWORD = "invalid_password"
    USERNAME_EXISTS = "username_exists"
    EMAIL_EXISTS = "email_exists"
    PASSWORD_TOO_LONG = "password_too_long"
    MALFORMED_INPUT = "malformed_input"
    FORBIDDEN = "forbidden"
    SERVER_ERROR = "server_error"


@dataclass
class UserCredential:
    """A stored identity.

    password_hash is the bcrypt digest; the plaintext is never kept. role_name
    comes from the LEFT JOIN on roles and is None when the join finds nothing.
    failed_login_attempts is incremented on every wrong password and reset to 0
    on a successful login. Nothing locks the account at any threshold.
    """

    username: str
    email: str
    password_hash: str
    id: int | None = None
    role_id: int | None = None
    role_name: str | None = None
    full_name: str | None = None
    phone_number: str | None = None
    is_active: bool = True
    failed_login_attempts: int = 0
    last_login: str | None = None  # ISO 8601, set on successful login
    created_at: str | None = None


@dataclass
class Role:
    id: int
    name: str


@dataclass
class RequestOrigin:
    """Where an attempt came from: client IP and User-Agent, both optional."""

    ip_address: str | None = None
    user_agent: str | None = None


@dataclass
class AuditEvent:
    """One security-relevant action to be appended to the audit log.

    user_id is None for pre-authentication failures (unknown user, missing
    credentials, failed registration). details must never contain a password
    or a password hash.
    """

    action_type: ActionType
    status: ActionStatus
    user_id: int | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    details: dict[str, Any] | None = None


@dataclass
class AuditRecord:
    """An audit row as read back from storage. Immutable once written."""

    id: int
    action_type: str
    status: str
    created_at: str
    user_id: int | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    details: dict[str, Any] | None = field(default=None)
