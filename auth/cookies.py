"""
auth/cookies.py -- HTTP cookie helpers for token and session transport.

Three cookies, all httpOnly, samesite=lax, path=/:
  access_token   -- max_age = access TTL (15 min)
  refresh_token  -- max_age = refresh TTL (7 days)
  session_id     -- max_age = session TTL (24h)

httponly=True: JS cannot read the cookies (XSS mitigation).
samesite="lax": sent on same-site navigations and top-level GET links, not on
    cross-site POST -- CSRF mitigation for the state-changing auth routes.
secure: set when SECURE_COOKIES resolves true (production default).

Clearing writes an empty value with max_age=0 so every browser drops the
cookie immediately.
"""

from __future__ import annotations

from typing import Literal

from fastapi import Response

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"
SESSION_COOKIE = "session_id"
AUTH_COOKIES = (ACCESS_COOKIE, REFRESH_COOKIE, SESSION_COOKIE)

COOKIE_PATH = "/"
COOKIE_SAMESITE: Literal["lax", "strict", "none"] = "lax"


def _set(response: Response, key: str, value: str, max_age: int, secure: bool) -> None:
    response.set_cookie(
        key=key,
        value=value,
        max_age=max_age,
        path=COOKIE_PATH,
        secure=secure,
        httponly=True,
        samesite=COOKIE_SAMESITE,
    )


def set_token_cookies(
    response: Response,
    access_token: str,
    refresh_token: str,
    *,
    access_max_age: int,
    refresh_max_age: int,
    secure: bool,
) -> None:
    _set(response, ACCESS_COOKIE, access_token, access_max_age, secure)
    _set(response, REFRESH_COOKIE, refresh_token, refresh_max_age, secure)


def set_session_cookie(response: Response, session_id: str, *, max_age: int, secure: bool) -> None:
    _set(response, SESSION_COOKIE, session_id, max_age, secure)


def clear_auth_cookies(response: Response, *, secure: bool) -> None:
    """Expire all three auth cookies (empty value, max_age=0)."""
    for key in AUTH_COOKIES:
        _set(response, key, "", 0, secure)
