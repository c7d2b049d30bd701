"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Barcomp happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Only the composition roots (api/main.py and the CLI in main.py) call
get_settings(). Everything below them -- the token codec, the session store,
the auth gate -- receives a Settings object or plain values explicitly, so
tests can hand in a fixed secret without touching the environment.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. JWT signing and
       the HMAC used to store session tokens both rely on key entropy.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure. A random per-process key would silently log
       every admin out on each restart.

Layer rule: core/ is the kernel. This module may not import from api/, web/,
or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("barcomp.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'barcomp.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. List fields are read from the
    environment as JSON, e.g. PROTECTED_PREFIXES='["/admin"]'.
    """

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
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Session cookie and token lifetimes
    # ------------------------------------------------------------------

    cookie_name: str = "auth_token"
    secure_cookies: bool = False
    token_short_ttl_seconds: int = 24 * 60 * 60
    token_extended_ttl_seconds: int = 30 * 24 * 60 * 60

    # ------------------------------------------------------------------
    # Session store
    # ------------------------------------------------------------------

    session_lookup_timeout_seconds: float = 2.0
    session_purge_interval_seconds: int = 6 * 60 * 60

    # ------------------------------------------------------------------
    # Auth gate
    # ------------------------------------------------------------------

    protected_prefixes: list[str] = ["/admin"]
    public_paths: list[str] = ["/admin/login", "/admin/logout"]
    login_path: str = "/admin/login"
    unauthorized_path: str = "/unauthorized"

    # ------------------------------------------------------------------
    # Rate limiting and registration
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    self_registration_enabled: bool = True

    # ------------------------------------------------------------------
    # HTTP hardening
    # ------------------------------------------------------------------

    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
        Production mode: refuse to start if SECRET_KEY is missing.
        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Sessions will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def validate_lifetimes(self) -> "Settings":
        if self.token_short_ttl_seconds <= 0 or self.token_extended_ttl_seconds <= 0:
            raise ValueError("Token lifetimes must be positive.")
        if self.token_extended_ttl_seconds < self.token_short_ttl_seconds:
            raise ValueError("TOKEN_EXTENDED_TTL_SECONDS must not be shorter than TOKEN_SHORT_TTL_SECONDS.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
