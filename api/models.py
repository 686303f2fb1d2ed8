"""
API request and response models for the bankauth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Wire names are camelCase (fullName, phoneNumber, roleId ...); the alias
generator maps them onto snake_case attributes.

Request fields are all optional at the schema level: a missing username or
password is a domain outcome (400, audited) decided by the auth service, not
a schema error.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from auth.models import AuditRecord, UserCredential


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(_CamelModel):
    """Request body for POST /api/auth/login."""

    username: Optional[str] = None
    password: Optional[str] = None


class RegisterRequest(_CamelModel):
    """Request body for POST /api/auth/register. fullName and phoneNumber are optional."""

    username: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    full_name: Optional[str] = None
    phone_number: Optional[str] = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserProfile(_CamelModel):
    """Non-secret user attributes echoed back on success. Never carries the hash."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: int
    username: str
    email: str
    full_name: Optional[str]
    phone_number: Optional[str]
    role_id: Optional[int]
    role_name: str

    @classmethod
    def from_credential(cls, user: UserCredential, role_name: str) -> "UserProfile":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            full_name=user.full_name,
            phone_number=user.phone_number,
            role_id=user.role_id,
            role_name=role_name,
        )


class AuthResponse(_CamelModel):
    success: bool = True
    token: str
    user: UserProfile


class MeResponse(_CamelModel):
    success: bool = True
    user: UserProfile


class AuditRecordResponse(_CamelModel):
    id: int
    user_id: Optional[int]
    action_type: str
    status: str
    ip_address: Optional[str]
    user_agent: Optional[str]
    details: Optional[dict]
    created_at: str

    @classmethod
    def from_record(cls, record: AuditRecord) -> "AuditRecordResponse":
        return cls(
            id=record.id,
            user_id=record.user_id,
            action_type=record.action_type,
            status=record.status,
            ip_address=record.ip_address,
            user_agent=record.user_agent,
            details=record.details,
            created_at=record.created_at,
        )


class AuditListResponse(_CamelModel):
    success: bool = True
    records: list[AuditRecordResponse]


class ErrorResponse(BaseModel):
    """Standard error envelope for every non-2xx response."""

    success: bool = False
    message: str


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
