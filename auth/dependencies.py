"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Access tokens are accepted from two places, in priority order:
  1. "access_token" cookie -- set by POST /auth/login and /auth/refresh.
  2. Authorization: Bearer <token> header -- API clients.

Only TokenVerifier (the strong tier) is consulted here. Federated tokens
and session cookies never authenticate a request: a session is a display
cache, and a federated identity is unverified.

try_get_current_claims() is the soft variant (returns None on failure).
get_current_user() wraps it, reloads the user from the store, and raises
AuthenticationError (401) if either step fails.
require_admin() wraps get_current_user() and raises AuthorizationError (403).
The role check uses the stored record, not the token claim, so a demoted
admin loses access before their access token expires.

Layer rule: auth/dependencies.py may import from fastapi (for Request)
because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.cookies import ACCESS_COOKIE
from auth.errors import AuthenticationError, AuthorizationError
from auth.models import TokenClaims, User
from auth.tokens import ACCESS, TokenVerifier


def extract_access_token(request: Request) -> str | None:
    """Return the raw access token from the cookie or the Bearer header."""
    token: str | None = request.cookies.get(ACCESS_COOKIE)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:].strip()
    return token or None


def try_get_current_claims(request: Request) -> TokenClaims | None:
    """Verify the request's access token. Never raises."""
    verifier: TokenVerifier = request.app.state.token_verifier
    return verifier.verify(extract_access_token(request), ACCESS)


def get_current_user(request: Request) -> User:
    """Require a valid access token for an existing user. Raises 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    claims = try_get_current_claims(request)
    if claims is None:
        raise AuthenticationError()
    user = request.app.state.user_store.find_by_id(claims.id)
    if user is None:
        raise AuthenticationError()
    return user


def require_admin(request: Request) -> User:
    """Require the admin role. Raises 401 if unauthenticated, 403 if not admin."""
    user = get_current_user(request)
    if user.role != "admin":
        raise AuthorizationError("Admin access required.")
    return user
