"""
core/config.py -- PassGate settings, read once from the environment and .env.

Every environment read goes through get_settings(); modules never touch
os.environ themselves. JSON-valued variables (FEDERATED_ROLE_MAP,
ALLOWED_HOSTS, CORS_ORIGINS) are decoded by pydantic-settings.

Startup rules enforced by the validators below:

  [M6] SECRET_KEY and REFRESH_SECRET_KEY must be at least 32 characters.
       Both sign HS256 tokens, so key length is the whole security margin.

  [M7] Outside DEBUG a missing SECRET_KEY stops startup. In DEBUG a random
       key is generated, and tokens die with the process.

  SECURE_COOKIES defaults to the opposite of DEBUG.

  FEDERATED_ROLE_MAP keys are lowercased; a role outside ROLES is a startup
  error. Privileged federated users are named here, never in code.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from typing import Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("passgate.config")

ROLES: tuple[str, ...] = ("admin", "user")


class Settings(BaseSettings):
    """PassGate settings. Every field has a default, so tests can build one directly."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    # Optional second key for refresh tokens. Empty means "reuse secret_key".
    refresh_secret_key: str = ""

    # ------------------------------------------------------------------
    # Tokens and cookies
    # ------------------------------------------------------------------

    # None means "derive from DEBUG": Secure cookies everywhere except dev.
    secure_cookies: Optional[bool] = None
    access_token_expire_minutes: int = 15
    refresh_token_expire_days: int = 7
    token_issuer: str = "passgate"
    token_audience: str = "passgate-users"

    # ------------------------------------------------------------------
    # Sessions and OTP
    # ------------------------------------------------------------------

    session_ttl_hours: int = 24
    otp_max_attempts: int = 3
    purge_interval_seconds: int = 30 * 60

    # ------------------------------------------------------------------
    # Federated identity (decode-only trust tier)
    # ------------------------------------------------------------------

    # Exact `iss` claim expected on federated tokens, e.g.
    # "https://securetoken.google.com/<project-id>". Empty rejects every token.
    federated_issuer: str = ""
    federated_audience: str = ""
    # JSON object mapping lowercased email -> role, e.g. {"ops@example.com": "admin"}
    federated_role_map: dict[str, str] = {}

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    # Empty means the default SQLite file next to auth/store.py.
    auth_db_url: str = ""

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    otp_rate_limit: str = "20/minute"

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    self_registration_enabled: bool = True

    # ------------------------------------------------------------------
    # HTTP surface
    # ------------------------------------------------------------------

    # JSON lists, e.g. ALLOWED_HOSTS='["auth.example.com"]'
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M6][M7] and resolve derived defaults.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. Tokens will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        if self.refresh_secret_key and len(self.refresh_secret_key) < 32:
            raise ValueError("REFRESH_SECRET_KEY must be at least 32 characters.")
        if self.secure_cookies is None:
            self.secure_cookies = not self.debug
        return self

    @model_validator(mode="after")
    def validate_role_map(self) -> "Settings":
        """Normalize FEDERATED_ROLE_MAP keys and reject unknown roles."""
        normalized: dict[str, str] = {}
        for email, role in self.federated_role_map.items():
            if role not in ROLES:
                raise ValueError(f"FEDERATED_ROLE_MAP: unknown role {role!r} for {email!r}")
            normalized[email.strip().lower()] = role
        self.federated_role_map = normalized
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide Settings, built on first call.

    Tests that change the environment must call get_settings.cache_clear().
    """
    return Settings()
