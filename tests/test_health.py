"""
tests/test_health.py -- Integration tests for GET /api/v1/health and app-level plumbing.

Covers:
  - 200 response with status and version, no authentication required
  - unknown routes render the shared error envelope
  - unexpected exceptions become a generic 500 without leaking details
  - /docs requires authentication
  - untrusted Host headers are rejected
  - the periodic sweep removes expired sessions and OTP records
  - a failing sweep is logged and the loop keeps running until cancelled
"""

from __future__ import annotations

import asyncio
import logging
from types import SimpleNamespace

from fastapi.testclient import TestClient

from api.main import API_VERSION, _purge_loop, app, purge_expired, stop_purge_task
from auth.models import UserSnapshot
from tests.conftest import FakeClock, Stores, bearer


def test_health_returns_200_with_version(client: TestClient) -> None:
    """Health endpoint returns 200 with status and version."""
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "version": API_VERSION}


def test_health_no_auth_required(client: TestClient) -> None:
    """Health endpoint is accessible without any authentication headers."""
    resp = client.get("/api/v1/health", headers={})
    assert resp.status_code == 200


def test_unknown_route_uses_error_envelope(client: TestClient) -> None:
    resp = client.get("/api/v1/does-not-exist")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "http_404"


def test_unexpected_error_is_generic_500(client: TestClient, stores: Stores, monkeypatch) -> None:
    """Internal failures are logged server-side; the body carries no exception text."""

    def explode(email: str):
        raise RuntimeError("secret internal detail")

    monkeypatch.setattr(stores.user_store, "find_by_email", explode)
    with TestClient(app, raise_server_exceptions=False) as c:
        resp = c.post("/api/v1/auth/login", json={"email": "a@example.com", "password": "whatever"})
    assert resp.status_code == 500
    body = resp.json()
    assert body["error"]["code"] == "internal_error"
    assert "secret internal detail" not in resp.text


def test_docs_require_auth(client: TestClient, user_token: str) -> None:
    assert client.get("/docs").status_code == 401
    assert client.get("/docs", headers=bearer(user_token)).status_code == 200


def test_untrusted_host_rejected(client: TestClient) -> None:
    resp = client.get("/api/v1/health", headers={"Host": "evil.example.com"})
    assert resp.status_code == 400


def test_purge_expired_sweeps_both_stores(client: TestClient, stores: Stores, clock: FakeClock) -> None:
    stores.otp_ledger.store("+911234567890", "1234", clock() + 60)
    seeded_session = stores.session_registry.create_session(
        "old-session", UserSnapshot(id="u1", email="u1@example.com", name="U1", role="user")
    )
    clock.advance(seeded_session.expires_at - clock() + 1)
    assert purge_expired(client.app.state) == (1, 1)


def test_purge_loop_survives_unexpected_errors(caplog) -> None:
    calls: list[int] = []

    class FlakyStore:
        def purge_expired(self) -> int:
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("disk unavailable")
            return 0

    stub = SimpleNamespace(state=SimpleNamespace(session_registry=FlakyStore(), otp_ledger=FlakyStore()))

    async def run() -> asyncio.Task:
        task = asyncio.create_task(_purge_loop(stub, 0))
        for _ in range(200):
            if len(calls) >= 3:
                break
            await asyncio.sleep(0)
        await stop_purge_task(task)
        return task

    with caplog.at_level(logging.ERROR, logger="passgate.api"):
        task = asyncio.run(run())
    assert len(calls) >= 3, "The loop must keep sweeping after a failure"
    assert task.cancelled()
    assert "Expired record purge failed" in caplog.text
