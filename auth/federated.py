"""
auth/federated.py -- Decode-only parser for third-party identity tokens.

This is the WEAK trust tier. The token's signature is not checked: the
payload is read with jose.jwt.get_unverified_claims() and only structural,
expiry, issuer and (optionally) audience checks are applied. Anyone can mint
a token that passes these checks.

Consequences, enforced by types rather than by convention:
  - parse() returns FederatedIdentity, never TokenClaims. auth/dependencies.py
    only accepts TokenClaims from TokenVerifier, so a federated identity
    cannot reach an authorization decision.
  - Nothing in this module issues self-signed credentials.

Role resolution, in order:
  1. an explicit "role" claim naming a known role;
  2. FEDERATED_ROLE_MAP (configured email -> role);
  3. "user".

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING

from jose import JWTError, jwt

from auth.models import FederatedIdentity
from core.config import ROLES

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("passgate.auth.federated")

DEFAULT_ROLE = "user"


class FederatedTokenParser:
    """Parse federated ID tokens at reduced trust.

    An empty expected_issuer rejects every token: federated identity is off
    until an issuer is configured.
    """

    def __init__(
        self,
        expected_issuer: str,
        *,
        expected_audience: str = "",
        role_map: Mapping[str, str] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.expected_issuer = expected_issuer
        self.expected_audience = expected_audience
        self._role_map = {k.strip().lower(): v for k, v in (role_map or {}).items()}
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, clock: Callable[[], float] = time.time) -> FederatedTokenParser:
        return cls(
            settings.federated_issuer,
            expected_audience=settings.federated_audience,
            role_map=settings.federated_role_map,
            clock=clock,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.expected_issuer)

    def parse(self, token: str | None) -> FederatedIdentity | None:
        """Return the unverified identity, or None if the token is rejected."""
        if not token or not self.enabled:
            return None
        try:
            claims = jwt.get_unverified_claims(token)
        except JWTError as exc:
            logger.debug("Federated token rejected: %s", exc)
            return None

        exp = claims.get("exp")
        if exp is not None:
            try:
                expired = self._clock() >= float(exp)
            except (TypeError, ValueError):
                logger.debug("Federated token rejected: non-numeric exp")
                return None
            if expired:
                logger.debug("Federated token rejected: expired")
                return None

        if claims.get("iss") != self.expected_issuer:
            logger.debug("Federated token rejected: unexpected issuer")
            return None

        if self.expected_audience and not _audience_matches(claims.get("aud"), self.expected_audience):
            logger.debug("Federated token rejected: unexpected audience")
            return None

        subject = claims.get("sub") or claims.get("user_id")
        email = claims.get("email")
        if not subject or not email:
            logger.debug("Federated token rejected: missing sub or email")
            return None
        name = claims.get("name") or ""
        if not all(isinstance(v, str) for v in (subject, email, name)):
            logger.debug("Federated token rejected: non-string sub, email or name")
            return None

        return FederatedIdentity(
            id=subject,
            email=email.strip().lower(),
            name=name,
            role=self.resolve_role(claims),
            issuer=claims["iss"],
            expires_at=int(exp) if exp is not None else None,
        )

    def resolve_role(self, claims: Mapping) -> str:
        """Explicit role claim, then configured email mapping, then the default role."""
        role = claims.get("role")
        if role in ROLES:
            return role
        email = claims.get("email")
        if isinstance(email, str):
            mapped = self._role_map.get(email.strip().lower())
            if mapped in ROLES:
                return mapped
        return DEFAULT_ROLE


def _audience_matches(aud, expected: str) -> bool:
    if isinstance(aud, str):
        return aud == expected
    if isinstance(aud, list):
        return expected in aud
    return False
