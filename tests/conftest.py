"""
tests/conftest.py -- Shared test fixtures for PassGate unit and integration tests.

This module provides:
  - FakeClock: a settable clock injected into stores, issuer and verifier
  - _make_test_stores(): isolated in-memory DBs for users, sessions and OTPs
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - client / admin_client fixtures: TestClient against the real app

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process. Each
fixture uses a fresh uuid suffix so tests never see each other's rows.

The DEBUG env var must be set before any auth/core import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import asyncio
import os
import time
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")
# TestClient sends Host: testserver; TrustedHostMiddleware must accept it.
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, stop_purge_task
from auth.federated import FederatedTokenParser
from auth.models import User, UserSnapshot
from auth.otp import OtpLedger
from auth.sessions import SessionRegistry
from auth.store import UserStore
from auth.tokens import CredentialIssuer, TokenVerifier, hash_password
from core.config import get_settings

FEDERATED_ISSUER = "https://securetoken.google.com/passgate-test"
FEDERATED_AUDIENCE = "passgate-test"

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "adminpass123"
USER_EMAIL = "user@example.com"
USER_PASSWORD = "userpass123"

# Rate limits are exercised by slowapi itself; route tests must not trip them.
limiter.enabled = False


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: float | None = None) -> None:
        self.now = start if start is not None else time.time()

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class Stores:
    user_store: UserStore
    session_registry: SessionRegistry
    otp_ledger: OtpLedger

    def close(self) -> None:
        self.otp_ledger.close()
        self.session_registry.close()
        self.user_store.close()


def memory_db_url(prefix: str = "test_auth") -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def _make_test_stores(clock: FakeClock | None = None) -> Stores:
    """Create isolated named shared-memory SQLite stores for one test."""
    url = memory_db_url()
    kwargs = {"clock": clock} if clock is not None else {}
    return Stores(
        user_store=UserStore(db_url=url),
        session_registry=SessionRegistry(url, ttl=timedelta(hours=24), **kwargs),
        otp_ledger=OtpLedger(url, max_attempts=3, **kwargs),
    )


def _patch_lifespan(stores: Stores, clock: FakeClock | None = None):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores and token services into app.state so
    TestClient routes see isolated test DBs rather than the production
    database.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """
    settings = get_settings()
    clock_kwargs = {"clock": clock} if clock is not None else {}

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = settings
        app.state.user_store = stores.user_store
        app.state.session_registry = stores.session_registry
        app.state.otp_ledger = stores.otp_ledger
        app.state.token_issuer = CredentialIssuer.from_settings(settings, **clock_kwargs)
        app.state.token_verifier = TokenVerifier.from_settings(settings, **clock_kwargs)
        app.state.federated_parser = FederatedTokenParser(
            FEDERATED_ISSUER,
            expected_audience=FEDERATED_AUDIENCE,
            role_map={"ops@example.com": "admin"},
            **clock_kwargs,
        )
        app.state.federated_sign_out = None
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        await stop_purge_task(app.state.purge_task)

    return test_lifespan


def seed_user(store: UserStore, email: str, password: str, *, role: str = "user", name: str = "") -> User:
    return store.create(
        User(
            id="",
            email=email,
            name=name or email.split("@")[0].title(),
            role=role,
            password_hash=hash_password(password),
        )
    )


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(start=1_700_000_000.0)


@pytest.fixture
def stores(clock: FakeClock) -> Generator[Stores, None, None]:
    s = _make_test_stores(clock)
    yield s
    s.close()


@pytest.fixture
def client(stores: Stores, clock: FakeClock) -> Generator[TestClient, None, None]:
    """TestClient over the real app with isolated stores and a pinned clock.

    One client per test: cookies set by login must not leak between tests.
    """
    app.router.lifespan_context = _patch_lifespan(stores, clock)
    with TestClient(app, raise_server_exceptions=True) as c:
        yield c


@pytest.fixture
def seeded(stores: Stores) -> dict[str, User]:
    """One admin and one regular user."""
    return {
        "admin": seed_user(stores.user_store, ADMIN_EMAIL, ADMIN_PASSWORD, role="admin"),
        "user": seed_user(stores.user_store, USER_EMAIL, USER_PASSWORD),
    }


@pytest.fixture
def admin_token(client: TestClient, seeded: dict[str, User]) -> str:
    """Access token for the seeded admin, minted by the app's own issuer."""
    issuer: CredentialIssuer = client.app.state.token_issuer
    return issuer.issue(UserSnapshot.from_user(seeded["admin"])).access_token


@pytest.fixture
def user_token(client: TestClient, seeded: dict[str, User]) -> str:
    issuer: CredentialIssuer = client.app.state.token_issuer
    return issuer.issue(UserSnapshot.from_user(seeded["user"])).access_token
