"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for AuthKeep happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Two layers:
  Settings (BaseSettings): the raw, process-wide configuration read from the
      environment and an optional .env file. Cached once by get_settings().

  EngineConfig (frozen dataclass): the immutable slice of Settings that the
      SessionEngine and the stores consume. It is built once at startup via
      Settings.engine_config() and injected at construction time, so the
      engine never reads ambient state at call time and tests can hand it
      short TTLs directly.

Security notes:
  [M6] JWT secrets shorter than 32 chars are rejected outright.

  [M7] In production mode (DEBUG not set or false), missing JWT secrets are a
       hard startup failure. Dev mode generates random ones with a warning.

  The access and refresh secrets must differ. A refresh token must never
  verify as an access token and vice versa.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
or notify/.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("authkeep.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'authkeep.db'}"


def utc_now() -> datetime:
    """Return the current timezone-aware UTC time. Default clock for all components."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class EngineConfig:
    """Immutable configuration injected into the SessionEngine and its stores."""

    jwt_secret: str
    jwt_refresh_secret: str
    jwt_issuer: str = "auth-service"
    jwt_audience: str = "auth-client"
    access_token_ttl: timedelta = timedelta(days=7)
    refresh_token_ttl: timedelta = timedelta(days=30)
    otp_length: int = 6
    otp_ttl: timedelta = timedelta(minutes=10)
    otp_max_per_hour: int = 5
    max_login_attempts: int = 5
    lock_window: timedelta = timedelta(minutes=15)
    bcrypt_rounds: int = 12
    recheck_status_on_code_login: bool = False


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.

    Environment variable name mapping: field names are uppercased automatically.
    E.g. `jwt_secret` reads from JWT_SECRET, `debug` reads from DEBUG.
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
    log_level: str = "INFO"
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates dev secrets or raises, so callers never see "".
    jwt_secret: str = ""
    jwt_refresh_secret: str = ""
    jwt_issuer: str = "auth-service"
    jwt_audience: str = "auth-client"
    access_token_expire_seconds: int = 7 * 24 * 3600
    refresh_token_expire_seconds: int = 30 * 24 * 3600
    secure_cookies: bool = False

    # ------------------------------------------------------------------
    # One-time codes and lockout
    # ------------------------------------------------------------------

    otp_length: int = 6
    otp_expire_minutes: int = 10
    otp_max_per_hour: int = 5
    max_login_attempts: int = 5
    lock_time_minutes: int = 15
    bcrypt_rounds: int = 12
    recheck_status_on_code_login: bool = False

    # ------------------------------------------------------------------
    # HTTP surface
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    code_rate_limit: str = "5/minute"
    allowed_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]

    # ------------------------------------------------------------------
    # Mail relay (optional -- empty URL means codes are only logged)
    # ------------------------------------------------------------------

    mail_api_url: str = ""
    mail_api_token: str = ""
    mail_from: str = "no-reply@authkeep.local"
    mail_timeout_seconds: float = 10.0

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    purge_interval_seconds: int = 6 * 60 * 60

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the JWT secret policy [M6][M7].

        Dev mode (DEBUG=true): auto-generate missing secrets with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if either secret is missing.

        Both modes: reject secrets shorter than 32 characters, and reject a
            refresh secret equal to the access secret.
        """
        for field_name in ("jwt_secret", "jwt_refresh_secret"):
            value = getattr(self, field_name)
            if not value:
                if self.debug:
                    setattr(self, field_name, secrets.token_hex(32))
                    logger.warning(
                        "WARNING: Using auto-generated %s. Sessions will not persist across restarts.",
                        field_name.upper(),
                    )
                else:
                    raise ValueError(
                        f"{field_name.upper()} is required in production mode. "
                        "Set it in your environment or .env file. "
                        "To run in development mode, set DEBUG=true."
                    )
            if len(getattr(self, field_name)) < 32:
                raise ValueError(f"{field_name.upper()} must be at least 32 characters.")
        if self.jwt_secret == self.jwt_refresh_secret:
            raise ValueError("JWT_SECRET and JWT_REFRESH_SECRET must differ.")
        if self.max_login_attempts < 1:
            raise ValueError("MAX_LOGIN_ATTEMPTS must be at least 1.")
        if not 4 <= self.otp_length <= 10:
            raise ValueError("OTP_LENGTH must be between 4 and 10.")
        return self

    def engine_config(self) -> EngineConfig:
        """Freeze the engine-relevant settings into an EngineConfig."""
        return EngineConfig(
            jwt_secret=self.jwt_secret,
            jwt_refresh_secret=self.jwt_refresh_secret,
            jwt_issuer=self.jwt_issuer,
            jwt_audience=self.jwt_audience,
            access_token_ttl=timedelta(seconds=self.access_token_expire_seconds),
            refresh_token_ttl=timedelta(seconds=self.refresh_token_expire_seconds),
            otp_length=self.otp_length,
            otp_ttl=timedelta(minutes=self.otp_expire_minutes),
            otp_max_per_hour=self.otp_max_per_hour,
            max_login_attempts=self.max_login_attempts,
            lock_window=timedelta(minutes=self.lock_time_minutes),
            bcrypt_rounds=self.bcrypt_rounds,
            recheck_status_on_code_login=self.recheck_status_on_code_login,
        )


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
