"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for setu-auth happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. refresh_secret_key -> REFRESH_SECRET_KEY).

  @model_validator(mode="after"): dev mode generates missing signing keys with
      a warning, production mode refuses to start without them.

Security notes:
  [M6] Signing keys shorter than 32 chars are rejected outright.
  [M7] Access and refresh keys must differ. A refresh token must never verify
       as an access token, and the token-hash HMAC key must not be the key
       that signs self-contained access tokens.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.durations import parse_duration

logger = logging.getLogger("setuauth.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'setu_auth.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
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
    # Empty string is the sentinel for "not configured".
    secret_key: str = ""
    refresh_secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Token windows -- duration expressions shared by JWT exp and DB expiry
    # ------------------------------------------------------------------

    access_token_expires_in: str = "15m"
    refresh_token_expires_in: str = "7d"
    password_reset_expires_in: str = "1h"

    # ------------------------------------------------------------------
    # Account protection
    # ------------------------------------------------------------------

    bcrypt_rounds: int = 12
    max_login_attempts: int = 5
    lockout_duration: str = "15m"
    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    cors_origins: list[str] = ["http://localhost:3000"]
    # Development convenience: return the plaintext reset token in the
    # /forgot-password response instead of handing it to a mailer only.
    expose_reset_token: bool = False

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator(
        "access_token_expires_in",
        "refresh_token_expires_in",
        "password_reset_expires_in",
        "lockout_duration",
    )
    @classmethod
    def validate_duration(cls, v: str) -> str:
        parse_duration(v)
        return v

    @field_validator("bcrypt_rounds")
    @classmethod
    def validate_bcrypt_rounds(cls, v: int) -> int:
        if not 4 <= v <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        return v

    @field_validator("max_login_attempts")
    @classmethod
    def validate_max_login_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("MAX_LOGIN_ATTEMPTS must be at least 1.")
        return v

    @model_validator(mode="after")
    def validate_secret_keys(self) -> "Settings":
        """Enforce the signing-key policy [M6] [M7].

        Dev mode (DEBUG=true): auto-generate missing keys with a warning.
            Issued tokens will not survive a restart.

        Production mode: refuse to start if either key is missing.
        """
        for field in ("secret_key", "refresh_secret_key"):
            if getattr(self, field):
                continue
            if self.debug:
                setattr(self, field, secrets.token_hex(32))
                logger.warning(
                    "Using auto-generated %s. Tokens will not persist across restarts.",
                    field.upper(),
                )
            else:
                raise ValueError(
                    f"{field.upper()} is required in production mode. "
                    "Set it in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32 or len(self.refresh_secret_key) < 32:
            raise ValueError("SECRET_KEY and REFRESH_SECRET_KEY must be at least 32 characters.")
        if self.secret_key == self.refresh_secret_key:
            raise ValueError("REFRESH_SECRET_KEY must differ from SECRET_KEY.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
