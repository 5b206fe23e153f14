"""
API request and response models for PassGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Wire format: JSON keys are camelCase (accessToken, phoneNumber, expiresAt).
Models are declared with snake_case attributes and an alias generator;
populate_by_name lets tests and internal callers use either form. Responses
built by hand must be dumped with by_alias=True.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from auth.models import FederatedIdentity, Session, User

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
PHONE_PATTERN = r"^\+?[0-9][0-9 \-]{5,30}$"

# bcrypt truncates beyond 72 bytes; keep well under it.
_PASSWORD_MAX = 64


class RoleEnum(str, Enum):
    admin = "admin"
    user = "user"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Auth -- request models
# ---------------------------------------------------------------------------


class LoginRequest(_CamelModel):
    """Request body for POST /api/v1/auth/login."""

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=_PASSWORD_MAX)


class RegisterRequest(_CamelModel):
    """Request body for POST /api/v1/auth/register and POST /api/v1/auth/setup."""

    email: str = Field(min_length=3, max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=6, max_length=_PASSWORD_MAX)
    name: str = Field(min_length=1, max_length=255)


class RefreshRequest(_CamelModel):
    """Optional body for POST /api/v1/auth/refresh. The cookie takes precedence."""

    refresh_token: Optional[str] = Field(default=None, max_length=4096)


class FederatedRequest(_CamelModel):
    """Request body for POST /api/v1/auth/federated."""

    id_token: str = Field(min_length=1, max_length=8192)


# ---------------------------------------------------------------------------
# Auth -- response models
# ---------------------------------------------------------------------------


class UserOut(_CamelModel):
    """Public identity fields. Never includes the password hash."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    email: str
    name: str
    role: str

    @classmethod
    def from_user(cls, user: User) -> "UserOut":
        return cls(id=user.id, email=user.email, name=user.name, role=user.role)


class SessionOut(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    created_at: str
    last_accessed: str
    expires_at: str

    @classmethod
    def from_session(cls, session: Session) -> "SessionOut":
        return cls(
            id=session.id,
            created_at=_iso(session.created_at),
            last_accessed=_iso(session.last_accessed),
            expires_at=_iso(session.expires_at),
        )


class AuthResponse(_CamelModel):
    """Response for login, registration, setup and refresh."""

    success: bool = True
    user: UserOut
    access_token: str


class MeResponse(_CamelModel):
    """Response for GET /api/v1/auth/me. session is informational and may be null."""

    success: bool = True
    user: UserOut
    session: Optional[SessionOut] = None
    authenticated: bool = True


class MessageResponse(_CamelModel):
    success: bool = True
    message: str


class SetupStatusResponse(_CamelModel):
    has_admin: bool


class FederatedIdentityResponse(_CamelModel):
    """Response for /api/v1/auth/federated. trust is always "unverified"."""

    success: bool = True
    user: UserOut
    issuer: str
    trust: str

    @classmethod
    def from_identity(cls, identity: FederatedIdentity) -> "FederatedIdentityResponse":
        return cls(
            user=UserOut(id=identity.id, email=identity.email, name=identity.name, role=identity.role),
            issuer=identity.issuer,
            trust=identity.trust,
        )


# ---------------------------------------------------------------------------
# User management (admin)
# ---------------------------------------------------------------------------


class UserCreate(_CamelModel):
    """Request body for POST /api/v1/auth/users."""

    email: str = Field(min_length=3, max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=6, max_length=_PASSWORD_MAX)
    name: str = Field(min_length=1, max_length=255)
    role: RoleEnum = RoleEnum.user
    permissions: Optional[list[str]] = Field(default=None, max_length=50)


class UserPatch(_CamelModel):
    """Request body for PATCH /api/v1/auth/users/{id}. Omitted fields are unchanged."""

    email: Optional[str] = Field(default=None, min_length=3, max_length=255, pattern=EMAIL_PATTERN)
    password: Optional[str] = Field(default=None, min_length=6, max_length=_PASSWORD_MAX)
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    role: Optional[RoleEnum] = None
    permissions: Optional[list[str]] = Field(default=None, max_length=50)


class UserDetail(UserOut):
    permissions: Optional[list[str]] = None
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_user(cls, user: User) -> "UserDetail":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            role=user.role,
            permissions=user.permissions,
            created_at=user.created_at or "",
            updated_at=user.updated_at or "",
        )


class UserListResponse(_CamelModel):
    users: list[UserDetail]
    count: int


# ---------------------------------------------------------------------------
# OTP
# ---------------------------------------------------------------------------


class OtpStoreRequest(_CamelModel):
    """Request body for POST /api/v1/otp/store.

    expiry_time accepts an ISO 8601 string or a UNIX timestamp (seconds or
    milliseconds). Naive datetimes are read as UTC.
    """

    phone_number: str = Field(min_length=1, max_length=32, pattern=PHONE_PATTERN)
    otp: str = Field(min_length=1, max_length=32)
    expiry_time: datetime

    def expiry_timestamp(self) -> float:
        expiry = self.expiry_time
        if expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=timezone.utc)
        return expiry.timestamp()


class OtpVerifyRequest(_CamelModel):
    """Request body for POST /api/v1/otp/verify."""

    phone_number: str = Field(min_length=1, max_length=32)
    otp: str = Field(min_length=1, max_length=32)


# ---------------------------------------------------------------------------
# Shared envelopes
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
