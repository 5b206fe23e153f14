"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and routes do
the work; these classes own the domain shape.

Two claim types exist on purpose:
  TokenClaims        -- produced only by TokenVerifier after signature, expiry
                        and kind checks. Authorization code accepts only this.
  FederatedIdentity  -- produced by FederatedTokenParser from an UNVERIFIED
                        third-party token. Identity reporting only.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class User:
    """A durable user credential record owned by UserStore.

    email is stored normalized (stripped, lowercased) and is unique across
    the store. password_hash is a bcrypt hash; plaintext is never stored.
    permissions is an optional list of free-form permission strings.
    """

    id: str
    email: str
    name: str
    role: str  # "admin" or "user"
    password_hash: str
    permissions: list[str] | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class UserSnapshot:
    """The minimal identity embedded in tokens and sessions."""

    id: str
    email: str
    name: str
    role: str

    @classmethod
    def from_user(cls, user: User) -> UserSnapshot:
        return cls(id=user.id, email=user.email, name=user.name, role=user.role)


@dataclass(frozen=True)
class TokenPair:
    """A freshly minted access/refresh pair. Never persisted."""

    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class TokenClaims:
    """Claims of a self-issued token that passed full verification."""

    id: str
    email: str
    name: str
    role: str
    kind: str  # "access" or "refresh"
    issued_at: int
    expires_at: int


@dataclass(frozen=True)
class FederatedIdentity:
    """Identity decoded from a federated token WITHOUT signature verification.

    trust is always "unverified". Never use this to authorize an action.
    """

    id: str
    email: str
    name: str
    role: str
    issuer: str
    expires_at: int | None = None
    trust: str = "unverified"


@dataclass
class Session:
    """A server-side session record. Timestamps are POSIX seconds (UTC).

    A session is a display/audit cache. Its presence never authorizes a request.
    """

    id: str
    user_id: str
    email: str
    name: str
    role: str
    created_at: float
    last_accessed: float
    expires_at: float


@dataclass
class OtpRecord:
    """A pending one-time passcode for a phone number.

    verified stays False for the lifetime of the row: a consumed code is
    deleted, never marked.
    """

    phone_number: str
    code: str
    expires_at: float
    created_at: float
    attempts: int = 0
    verified: bool = False
