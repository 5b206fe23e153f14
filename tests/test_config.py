"""
tests/test_config.py -- Unit tests for core/config.py (Settings validation).

Settings is instantiated directly with keyword arguments, which take
precedence over the DEBUG=true set by conftest.py.
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from core.config import Settings, get_settings

GOOD_KEY = "s" * 32


class TestSecretKey:
    def test_debug_generates_key(self) -> None:
        settings = Settings(debug=True, secret_key="")
        assert len(settings.secret_key) >= 32

    def test_production_requires_key(self) -> None:
        with pytest.raises(ValidationError, match="SECRET_KEY is required"):
            Settings(debug=False, secret_key="")

    def test_short_key_rejected(self) -> None:
        with pytest.raises(ValidationError, match="at least 32"):
            Settings(debug=True, secret_key="too-short")

    def test_short_refresh_key_rejected(self) -> None:
        with pytest.raises(ValidationError, match="REFRESH_SECRET_KEY"):
            Settings(debug=False, secret_key=GOOD_KEY, refresh_secret_key="short")


class TestDerivedDefaults:
    def test_secure_cookies_follow_debug(self) -> None:
        assert Settings(debug=False, secret_key=GOOD_KEY).secure_cookies is True
        assert Settings(debug=True, secret_key=GOOD_KEY).secure_cookies is False

    def test_secure_cookies_explicit_override(self) -> None:
        assert Settings(debug=True, secret_key=GOOD_KEY, secure_cookies=True).secure_cookies is True

    def test_defaults_match_documented_lifetimes(self) -> None:
        settings = Settings(debug=True, secret_key=GOOD_KEY)
        assert settings.access_token_expire_minutes == 15
        assert settings.refresh_token_expire_days == 7
        assert settings.session_ttl_hours == 24
        assert settings.otp_max_attempts == 3


class TestRoleMap:
    def test_keys_normalized(self) -> None:
        settings = Settings(debug=True, secret_key=GOOD_KEY, federated_role_map={" Ops@Example.com ": "admin"})
        assert settings.federated_role_map == {"ops@example.com": "admin"}

    def test_unknown_role_rejected(self) -> None:
        with pytest.raises(ValidationError, match="unknown role"):
            Settings(debug=True, secret_key=GOOD_KEY, federated_role_map={"ops@example.com": "root"})

    def test_role_map_from_env_json(self, monkeypatch) -> None:
        monkeypatch.setenv("FEDERATED_ROLE_MAP", '{"boss@example.com": "admin"}')
        monkeypatch.setenv("SECRET_KEY", GOOD_KEY)
        assert Settings().federated_role_map == {"boss@example.com": "admin"}


def test_get_settings_is_cached() -> None:
    assert get_settings() is get_settings()
