"""
api/main.py -- FastAPI application entry point for PassGate.

Exposes credential issuance, sessions, OTP verification and user management
over HTTP.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan handles startup (stores, token services, purge task) and shutdown
(cancel purge task, dispose engines) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress
from datetime import timedelta

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.otp import router as otp_router
from api.routes.v1.users import router as users_router
from auth.dependencies import get_current_user
from auth.errors import AuthError
from auth.federated import FederatedTokenParser
from auth.models import User
from auth.otp import OtpLedger
from auth.sessions import SessionRegistry
from auth.store import DEFAULT_DB_URL, UserStore
from auth.tokens import CredentialIssuer, TokenVerifier
from core.config import get_settings

API_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("passgate.api")

settings = get_settings()

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


def purge_expired(state) -> tuple[int, int]:
    """Delete expired sessions and OTP records. Returns (sessions, otps) removed."""
    return state.session_registry.purge_expired(), state.otp_ledger.purge_expired()


async def _purge_loop(app: FastAPI, interval: int) -> None:
    """Purge expired sessions and OTP records every `interval` seconds.

    Expiry is also enforced on every read, so a late or failed sweep never
    lets an expired record through; the sweep only reclaims space. A failed
    sweep is logged and the loop keeps going. CancelledError is a
    BaseException, so task.cancel() still stops the loop.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            purge_expired(app.state)
        except Exception:
            logger.exception("Expired record purge failed")


async def stop_purge_task(task: asyncio.Task) -> None:
    """Cancel the purge loop and wait for it to unwind."""
    task.cancel()
    with suppress(asyncio.CancelledError):
        await task


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. Stores are created here and attached to app.state; route
    handlers reach them through request.app.state, never through module
    globals.

    federated_sign_out is an optional async callable (request) -> None that
    logout awaits on a best-effort basis. Deployments that front a provider
    session assign it here; it defaults to None.
    """
    # Startup
    logger.info("PassGate API starting up")
    db_url = settings.auth_db_url or DEFAULT_DB_URL
    app.state.settings = settings
    app.state.user_store = UserStore(db_url)
    app.state.session_registry = SessionRegistry(db_url, ttl=timedelta(hours=settings.session_ttl_hours))
    app.state.otp_ledger = OtpLedger(db_url, max_attempts=settings.otp_max_attempts)
    app.state.token_issuer = CredentialIssuer.from_settings(settings)
    app.state.token_verifier = TokenVerifier.from_settings(settings)
    app.state.federated_parser = FederatedTokenParser.from_settings(settings)
    app.state.federated_sign_out = None
    logger.info(
        "Auth initialized (has_admin=%s, federated=%s)",
        app.state.user_store.has_admin(),
        app.state.federated_parser.enabled,
    )
    app.state.purge_task = asyncio.create_task(_purge_loop(app, settings.purge_interval_seconds))

    yield

    # Shutdown
    await stop_purge_task(app.state.purge_task)
    app.state.otp_ledger.close()
    app.state.session_registry.close()
    app.state.user_store.close()
    logger.info("PassGate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="PassGate API",
    description="Token issuance, server-side sessions, OTP verification and user management.",
    version=API_VERSION,
    lifespan=lifespan,
    # Disable built-in /docs and /redoc so we can add auth protection.
    # Auth-protected equivalents are registered below.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPIMiddleware looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])
app.include_router(otp_router, prefix="/api/v1", tags=["OTP"])


# ---------------------------------------------------------------------------
# Auth-protected API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(user: User = Depends(get_current_user)):
    """Swagger UI -- requires authentication."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="PassGate API")


@app.get("/redoc", include_in_schema=False)
async def redoc(user: User = Depends(get_current_user)):
    """ReDoc UI -- requires authentication."""
    return get_redoc_html(openapi_url="/openapi.json", title="PassGate API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render a typed auth error. 401s carry Cache-Control: no-store [M5]."""
    response = _error_response(exc.status_code, exc.code, exc.message)
    if exc.status_code == 401:
        response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Retry-After tells clients how many seconds to wait before retrying.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error_response(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with a structured error when the body or query params fail validation.

    Only the field location and message are reported. pydantic's `input` and
    `ctx` are dropped because they echo submitted values such as passwords.
    """
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    detail = "; ".join(parts)
    return _error_response(400, "validation_error", "Request validation failed.", detail)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Return a structured error for FastAPI/Starlette HTTP exceptions (404 route, 405 method)."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# No rate limit applied -- health checks from load balancers and monitoring
# systems must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=API_VERSION)
