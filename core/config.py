"""
core/config.py -- Process-wide settings for bankauth, loaded with pydantic-settings.

Environment variables (and an optional .env file) are read only here. Other
modules call get_settings() and never touch os.environ themselves.

get_settings() is wrapped in lru_cache, so the signing key, token lifetime,
bcrypt cost and rate-limit thresholds are resolved once and stay fixed until
the process exits. Field names map to upper-case env vars (secret_key reads
SECRET_KEY); pydantic coerces and range-checks every value.

Two model validators run after field parsing:
  validate_secret_key   -- a SECRET_KEY under 32 chars never loads; a missing
                           one is generated in DEBUG and fatal otherwise
  validate_bcrypt_rounds -- costs below 12 load only in DEBUG, which the test
                           suite uses to keep each hash in the millisecond range

Rotating SECRET_KEY invalidates every outstanding token.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("bankauth.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'bankauth.db'}"

# bcrypt cost accepted in production mode.
MIN_PRODUCTION_BCRYPT_ROUNDS = 12


class Settings(BaseSettings):
    """bankauth settings. Every field has a default, so only SECRET_KEY (or
    DEBUG=true) is needed to start.
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
    log_level: str = "INFO"

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    database_url: str = _DEFAULT_DB_URL
    db_timeout_seconds: float = Field(default=5.0, gt=0)
    # Audit rows waiting for the writer thread; beyond this they are dropped and counted.
    audit_max_pending: int = Field(default=10_000, gt=0)
    audit_close_timeout_seconds: float = Field(default=10.0, gt=0)

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    token_expire_seconds: int = Field(default=24 * 60 * 60, gt=0)
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)
    # Role assigned to self-registered users. Seeded as "user" by the store.
    default_role_id: int = 1

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    rate_limit_window_seconds: int = Field(default=15 * 60, gt=0)
    general_rate_limit: int = Field(default=100, gt=0)
    auth_rate_limit: int = Field(default=20, gt=0)
    rate_limit_storage_uri: str = "memory://"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Resolve SECRET_KEY or refuse to load.

        DEBUG generates a throwaway key and warns that tokens die with the
        process. Without DEBUG a missing key is an error. Either way the key
        must be at least 32 characters.
        """
        if not self.secret_key:
            if not self.debug:
                raise ValueError(
                    "SECRET_KEY is required when DEBUG is off. "
                    "Set it in the environment or .env, or set DEBUG=true for local development."
                )
            self.secret_key = secrets.token_hex(32)
            logger.warning("SECRET_KEY not set; generated a temporary key. Issued tokens will not survive a restart.")
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def validate_bcrypt_rounds(self) -> "Settings":
        """Reject a weak bcrypt cost outside DEBUG mode."""
        if not self.debug and self.bcrypt_rounds < MIN_PRODUCTION_BCRYPT_ROUNDS:
            raise ValueError(f"BCRYPT_ROUNDS must be at least {MIN_PRODUCTION_BCRYPT_ROUNDS} in production mode.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the cached Settings instance.

    Tests that need different values build Settings(_env_file=None, ...)
    directly instead of clearing this cache.
    """
    return Settings()
