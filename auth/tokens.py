"""
auth/tokens.py -- JWT issuance/verification, password hashing, session ids.

Security design decisions:
  JWT: python-jose with HS256. Every token carries sub, email, name, role,
       iat, exp, iss, aud and an explicit "kind" claim ("access" | "refresh")
       so a refresh token can never be replayed where an access token is
       expected, and vice versa. Refresh tokens may use a separate key
       (REFRESH_SECRET_KEY); the kind claim isolates them even when they share
       SECRET_KEY.

  Issuance and verification are split into two classes. CredentialIssuer is
       pure given its keys and clock. TokenVerifier.verify() returns None on
       ANY failure -- expired, tampered, malformed, wrong kind, wrong issuer --
       so callers cannot build an oracle that tells "expired" from "forged".
       The reason is logged at DEBUG on the server only.

  Expiry: checked against the injected clock rather than jose's wall clock
       so tests can pin time. A token is expired once now >= exp.

  Passwords: bcrypt, used directly. The _DUMMY_HASH constant enables timing
       equalization in authenticate_user() so response time does not reveal
       whether an email is registered [C1].

  Refresh tokens are NOT single-use. Two refreshes with the same still-valid
       token both succeed. This matches the behavior this service replaces and
       is tracked as an open question in DESIGN.md.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import secrets
import time
from collections.abc import Callable
from datetime import timedelta
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from auth.models import TokenClaims, TokenPair, User, UserSnapshot

if TYPE_CHECKING:
    from auth.store import UserStore
    from core.config import Settings

logger = logging.getLogger("passgate.auth")

_ALGORITHM = "HS256"

ACCESS = "access"
REFRESH = "refresh"
TOKEN_KINDS = (ACCESS, REFRESH)

_REQUIRED_CLAIMS = ("sub", "email", "role", "kind", "iat", "exp")

Clock = Callable[[], float]

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt truncates input beyond 72 bytes. The API layer caps password
    length (Pydantic max_length) well below that.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


# Timing equalization dummy hash [C1]. Computed once at module load so the
# first login attempt is not measurably slower than later ones.
_DUMMY_HASH: str = hash_password("passgate_timing_dummy")


def authenticate_user(store: UserStore, email: str, password: str) -> User | None:
    """Authenticate an email/password login with timing equalization.

    Always runs bcrypt whether or not the user exists:
    - Unknown email: bcrypt runs against _DUMMY_HASH (same cost as a real check)
    - Wrong password: bcrypt runs against the real hash (same cost)

    Returns the User on success, None on any failure.
    """
    user = store.find_by_email(email)
    if user is None or not user.password_hash:
        # Equalize timing -- do NOT return early before running bcrypt [C1]
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user


def generate_session_id() -> str:
    """Return a 256-bit random hex session identifier."""
    return secrets.token_hex(32)


# ---------------------------------------------------------------------------
# Credential issuer
# ---------------------------------------------------------------------------


class CredentialIssuer:
    """Mint signed access/refresh pairs from a user snapshot.

    No store access and no side effects: the output depends only on the
    snapshot, the keys and clock().
    """

    def __init__(
        self,
        secret_key: str,
        *,
        refresh_secret_key: str | None = None,
        access_ttl: timedelta = timedelta(minutes=15),
        refresh_ttl: timedelta = timedelta(days=7),
        issuer: str = "passgate",
        audience: str = "passgate-users",
        clock: Clock = time.time,
    ) -> None:
        self._keys = {ACCESS: secret_key, REFRESH: refresh_secret_key or secret_key}
        self._ttls = {ACCESS: access_ttl, REFRESH: refresh_ttl}
        self.issuer = issuer
        self.audience = audience
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock = time.time) -> CredentialIssuer:
        return cls(
            settings.secret_key,
            refresh_secret_key=settings.refresh_secret_key or None,
            access_ttl=timedelta(minutes=settings.access_token_expire_minutes),
            refresh_ttl=timedelta(days=settings.refresh_token_expire_days),
            issuer=settings.token_issuer,
            audience=settings.token_audience,
            clock=clock,
        )

    @property
    def access_ttl(self) -> timedelta:
        return self._ttls[ACCESS]

    @property
    def refresh_ttl(self) -> timedelta:
        return self._ttls[REFRESH]

    def issue(self, user: UserSnapshot) -> TokenPair:
        """Return a new access/refresh pair for the given identity."""
        now = int(self._clock())
        return TokenPair(
            access_token=self._encode(user, ACCESS, now),
            refresh_token=self._encode(user, REFRESH, now),
        )

    def _encode(self, user: UserSnapshot, kind: str, now: int) -> str:
        payload = {
            "sub": user.id,
            "email": user.email,
            "name": user.name,
            "role": user.role,
            "kind": kind,
            "iat": now,
            "exp": now + int(self._ttls[kind].total_seconds()),
            "iss": self.issuer,
            "aud": self.audience,
        }
        return jwt.encode(payload, self._keys[kind], algorithm=_ALGORITHM)


# ---------------------------------------------------------------------------
# Token verifier (strong trust tier)
# ---------------------------------------------------------------------------


class TokenVerifier:
    """Verify self-issued tokens: signature, issuer, audience, expiry, kind.

    This is the only source of claims that authorization code may trust.
    """

    def __init__(
        self,
        secret_key: str,
        *,
        refresh_secret_key: str | None = None,
        issuer: str = "passgate",
        audience: str = "passgate-users",
        clock: Clock = time.time,
    ) -> None:
        self._keys = {ACCESS: secret_key, REFRESH: refresh_secret_key or secret_key}
        self.issuer = issuer
        self.audience = audience
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock = time.time) -> TokenVerifier:
        return cls(
            settings.secret_key,
            refresh_secret_key=settings.refresh_secret_key or None,
            issuer=settings.token_issuer,
            audience=settings.token_audience,
            clock=clock,
        )

    def verify(self, token: str | None, expected_kind: str) -> TokenClaims | None:
        """Return the verified claims, or None on any failure.

        Returning None (rather than raising) keeps the caller simple: every
        invalid token is treated as unauthenticated. Route handlers turn None
        into a uniform 401.
        """
        if not token or expected_kind not in TOKEN_KINDS:
            return None
        try:
            payload = jwt.decode(
                token,
                self._keys[expected_kind],
                algorithms=[_ALGORITHM],
                audience=self.audience,
                issuer=self.issuer,
                # Expiry is checked below against the injected clock.
                options={"verify_exp": False},
            )
        except JWTError as exc:
            logger.debug("Token rejected: %s", exc)
            return None

        if any(payload.get(name) in (None, "") for name in _REQUIRED_CLAIMS):
            logger.debug("Token rejected: missing required claim")
            return None
        if payload["kind"] != expected_kind:
            logger.debug("Token rejected: kind %r, expected %r", payload["kind"], expected_kind)
            return None
        try:
            expires_at = int(payload["exp"])
            issued_at = int(payload["iat"])
        except (TypeError, ValueError):
            logger.debug("Token rejected: non-numeric iat/exp")
            return None
        if self._clock() >= expires_at:
            logger.debug("Token rejected: expired")
            return None

        return TokenClaims(
            id=str(payload["sub"]),
            email=payload["email"],
            name=payload.get("name") or "",
            role=payload["role"],
            kind=payload["kind"],
            issued_at=issued_at,
            expires_at=expires_at,
        )
