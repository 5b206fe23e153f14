"""
api/routes/v1/auth.py -- Authentication, session and account bootstrap endpoints.

Routes:
  POST /api/v1/auth/login       -- password login; sets token and session cookies
  POST /api/v1/auth/refresh     -- exchange a refresh token for a new pair
  POST /api/v1/auth/logout      -- best-effort cleanup; always 200; clears cookies
  GET  /api/v1/auth/me          -- current user plus session info (requires auth)
  GET  /api/v1/auth/sessions    -- caller's live sessions (requires auth)
  POST /api/v1/auth/register    -- self-service account creation (role "user")
  GET  /api/v1/auth/setup       -- {hasAdmin} for first-run UIs
  POST /api/v1/auth/setup       -- create the first admin; 409 once one exists
  POST /api/v1/auth/federated   -- inspect a federated ID token (informational)
  GET  /api/v1/auth/federated   -- same, token from the Bearer header

Security:
  [H2] login, register and setup are rate-limited by LOGIN_RATE_LIMIT per IP.
  [C1] authenticate_user() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on every response that carries tokens.
  Federated tokens are decoded without signature checks. The federated routes
  report the identity with trust "unverified" and never set cookies or issue
  credentials.
  Refresh tokens are not single-use: a still-valid refresh token can be
  exchanged more than once until it expires.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.limiter import limiter, login_limit
from api.models import (
    AuthResponse,
    FederatedIdentityResponse,
    FederatedRequest,
    LoginRequest,
    MeResponse,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    SessionOut,
    SetupStatusResponse,
    UserOut,
)
from api.routes.v1.users import create_account
from auth.cookies import REFRESH_COOKIE, SESSION_COOKIE, clear_auth_cookies, set_session_cookie, set_token_cookies
from auth.dependencies import get_current_user, try_get_current_claims
from auth.errors import AuthenticationError, AuthorizationError, ConflictError, NotFoundError, ValidationError
from auth.federated import FederatedTokenParser
from auth.models import FederatedIdentity, TokenPair, User, UserSnapshot
from auth.sessions import SessionRegistry
from auth.store import UserStore
from auth.tokens import REFRESH, CredentialIssuer, TokenVerifier, authenticate_user, generate_session_id, hash_password

logger = logging.getLogger("passgate.api.auth")

# Auth policy:
# - POST /api/v1/auth/login:      public -- login endpoint must be unauthenticated
# - POST /api/v1/auth/refresh:    public -- the refresh token is the credential
# - POST /api/v1/auth/logout:     public -- clearing cookies needs no prior auth
# - POST /api/v1/auth/register:   public, unless SELF_REGISTRATION_ENABLED=false
# - GET  /api/v1/auth/setup:      public -- first-run UIs poll this
# - POST /api/v1/auth/setup:      public, only while no admin exists
# - *    /api/v1/auth/federated:  public -- informational, grants nothing
# - GET  /api/v1/auth/me:         requires a valid access token
# - GET  /api/v1/auth/sessions:   requires auth (get_current_user)
router = APIRouter()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _apply_token_cookies(request: Request, response: JSONResponse, pair: TokenPair) -> None:
    issuer: CredentialIssuer = request.app.state.token_issuer
    set_token_cookies(
        response,
        pair.access_token,
        pair.refresh_token,
        access_max_age=int(issuer.access_ttl.total_seconds()),
        refresh_max_age=int(issuer.refresh_ttl.total_seconds()),
        secure=request.app.state.settings.secure_cookies,
    )


def _signed_in_response(request: Request, user: User, *, status_code: int = 200) -> JSONResponse:
    """Issue a token pair, open a server-side session and set all three cookies."""
    issuer: CredentialIssuer = request.app.state.token_issuer
    registry: SessionRegistry = request.app.state.session_registry

    snapshot = UserSnapshot.from_user(user)
    pair = issuer.issue(snapshot)
    session_id = generate_session_id()
    registry.create_session(session_id, snapshot)

    resp = JSONResponse(
        status_code=status_code,
        content=AuthResponse(user=UserOut.from_user(user), access_token=pair.access_token).model_dump(by_alias=True),
    )
    _apply_token_cookies(request, resp, pair)
    set_session_cookie(
        resp,
        session_id,
        max_age=registry.ttl_seconds,
        secure=request.app.state.settings.secure_cookies,
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _federated_response(request: Request, token: Optional[str]) -> FederatedIdentityResponse:
    parser: FederatedTokenParser = request.app.state.federated_parser
    if not token:
        raise ValidationError("ID token is required.")
    identity: FederatedIdentity | None = parser.parse(token)
    if identity is None:
        raise AuthenticationError("Invalid federated token.")
    return FederatedIdentityResponse.from_identity(identity)


# ---------------------------------------------------------------------------
# Login / refresh / logout
# ---------------------------------------------------------------------------


@limiter.limit(login_limit)  # [H2] brute-force mitigation
@router.post("/auth/login", response_model=AuthResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set token and session cookies.

    Uses authenticate_user() which includes timing equalization [C1]. Do NOT
    inline find_by_email() + verify_password() -- that re-introduces the
    timing attack.

    Unknown email and wrong password produce the same 401 so the response
    does not reveal which accounts exist.
    """
    user_store: UserStore = request.app.state.user_store
    user = authenticate_user(user_store, body.email, body.password)
    if user is None:
        logger.warning("Failed login attempt from %s", request.client.host if request.client else "unknown")
        raise AuthenticationError("Invalid email or password.")
    logger.info("User %s logged in", user.id)
    return _signed_in_response(request, user)


@router.post("/auth/refresh", response_model=AuthResponse)
def refresh(request: Request, body: Optional[RefreshRequest] = None) -> JSONResponse:
    """Exchange a refresh token (cookie first, then body) for a new token pair.

    The user record is reloaded so the new tokens carry the current role and
    profile. If the request carries a session_id cookie for one of the
    caller's own sessions, its snapshot is updated and its expiry pushed
    out. A missing, expired or foreign session is left alone and does not
    fail the refresh.
    """
    verifier: TokenVerifier = request.app.state.token_verifier
    issuer: CredentialIssuer = request.app.state.token_issuer
    registry: SessionRegistry = request.app.state.session_registry
    user_store: UserStore = request.app.state.user_store

    token = request.cookies.get(REFRESH_COOKIE) or (body.refresh_token if body else None)
    claims = verifier.verify(token, REFRESH)
    if claims is None:
        raise AuthenticationError("Invalid or expired refresh token.")

    user = user_store.find_by_id(claims.id)
    if user is None:
        raise AuthenticationError("User not found.")

    snapshot = UserSnapshot.from_user(user)
    pair = issuer.issue(snapshot)
    resp = JSONResponse(
        content=AuthResponse(user=UserOut.from_user(user), access_token=pair.access_token).model_dump(by_alias=True),
    )
    _apply_token_cookies(request, resp, pair)

    session_id = request.cookies.get(SESSION_COOKIE)
    if session_id and registry.update_session(session_id, snapshot) and registry.extend_session(session_id):
        set_session_cookie(
            resp,
            session_id,
            max_age=registry.ttl_seconds,
            secure=request.app.state.settings.secure_cookies,
        )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
async def logout(request: Request) -> JSONResponse:
    """End the session and clear all auth cookies. Always returns 200.

    Session destruction and the federated sign-out hook are best effort:
    failures are logged and the cookies are cleared regardless.
    """
    state = request.app.state
    session_id = request.cookies.get(SESSION_COOKIE)
    if session_id:
        try:
            state.session_registry.destroy_session(session_id)
        except Exception:
            logger.warning("Session cleanup failed during logout", exc_info=True)

    sign_out = getattr(state, "federated_sign_out", None)
    if sign_out is not None:
        try:
            await sign_out(request)
        except Exception:
            logger.warning("Federated sign-out failed during logout", exc_info=True)

    resp = JSONResponse(content=MessageResponse(message="Logged out.").model_dump(by_alias=True))
    clear_auth_cookies(resp, secure=state.settings.secure_cookies)
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
async def me(request: Request) -> MeResponse:
    """Return the current user and, when available, their server-side session.

    Identity comes from the access token and the stored record. The session
    is display data only: a missing or expired session yields session=null,
    never a 401.
    """
    claims = try_get_current_claims(request)
    if claims is None:
        raise AuthenticationError()

    user_store: UserStore = request.app.state.user_store
    user = user_store.find_by_id(claims.id)
    if user is None:
        raise NotFoundError("User not found.")

    session_out = None
    session_id = request.cookies.get(SESSION_COOKIE)
    if session_id:
        registry: SessionRegistry = request.app.state.session_registry
        session = registry.get_session(session_id)
        if session is not None and session.user_id == user.id:
            session_out = SessionOut.from_session(session)

    return MeResponse(user=UserOut.from_user(user), session=session_out)


@router.get("/auth/sessions", response_model=list[SessionOut])
async def list_sessions(
    request: Request,
    current_user: User = Depends(get_current_user),
) -> list[SessionOut]:
    """List the caller's live sessions, newest first."""
    registry: SessionRegistry = request.app.state.session_registry
    return [SessionOut.from_session(s) for s in registry.list_user_sessions(current_user.id)]


# ---------------------------------------------------------------------------
# Registration and first-run setup
# ---------------------------------------------------------------------------


@limiter.limit(login_limit)
@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a "user" account and sign it in. 403 when self-registration is off."""
    if not request.app.state.settings.self_registration_enabled:
        raise AuthorizationError("Self-registration is disabled.", code="registration_disabled")
    user = create_account(
        request.app.state.user_store,
        email=body.email,
        password=body.password,
        name=body.name,
    )
    logger.info("User %s registered", user.id)
    return _signed_in_response(request, user, status_code=201)


@router.get("/auth/setup", response_model=SetupStatusResponse)
async def setup_status(request: Request) -> SetupStatusResponse:
    """Report whether an admin account exists yet."""
    user_store: UserStore = request.app.state.user_store
    return SetupStatusResponse(has_admin=user_store.has_admin())


@limiter.limit(login_limit)
@router.post("/auth/setup", response_model=AuthResponse, status_code=201)
def setup(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create the first admin account and sign it in.

    The admin-exists check happens inside the insert statement
    (UserStore.create_first_admin), so two concurrent setup requests
    cannot both create an admin [M1].
    """
    user_store: UserStore = request.app.state.user_store
    candidate = User(
        id="",
        email=body.email,
        name=body.name,
        role="admin",
        password_hash=hash_password(body.password),
    )
    try:
        admin = user_store.create_first_admin(candidate)
    except IntegrityError as exc:
        raise ConflictError("An account with that email already exists.") from exc
    if admin is None:
        raise ConflictError("Setup already complete.", code="setup_complete")
    logger.info("First admin %s created via setup", admin.id)
    return _signed_in_response(request, admin, status_code=201)


# ---------------------------------------------------------------------------
# Federated identity (informational, unverified)
# ---------------------------------------------------------------------------


@router.post("/auth/federated", response_model=FederatedIdentityResponse)
async def federated_from_body(request: Request, body: FederatedRequest) -> FederatedIdentityResponse:
    """Decode a federated ID token from the request body. Grants nothing."""
    return _federated_response(request, body.id_token)


@router.get("/auth/federated", response_model=FederatedIdentityResponse)
async def federated_from_header(request: Request) -> FederatedIdentityResponse:
    """Decode a federated ID token from the Authorization: Bearer header. Grants nothing."""
    auth_header = request.headers.get("Authorization", "")
    token = auth_header[7:].strip() if auth_header.startswith("Bearer ") else None
    if not token:
        raise AuthenticationError("No token provided.")
    return _federated_response(request, token)
