"""
core/config.py -- UserPortal settings, read once from the environment.

Every tunable lives on Settings. Other modules ask get_settings() for the
shared instance and never read os.environ themselves.

Sources, highest priority first: keyword arguments (tests only), environment
variables, then a .env file in the working directory. Names are matched case
insensitively, so session_ttl_seconds is set with SESSION_TTL_SECONDS.

SECRET_KEY:
  Keys the HMAC that maps a session cookie to its row in the sessions table.
  Changing it invalidates every open session. With DEBUG=true and no key, a
  throwaway one is generated and a warning is logged; without DEBUG the
  process refuses to start. Keys under 32 characters are always refused.

Layer rule: core/ imports nothing from api/, web/, or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("userportal.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'userportal.db'}"


class Settings(BaseSettings):
    """Runtime configuration for UserPortal.

    Every field has a default, so an empty environment with DEBUG=true is a
    working local setup.
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
    # "" means unset; require_secret_key replaces it or refuses to start.
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    session_cookie_name: str = "session_id"
    # Sliding 24h window: every write to a session pushes its expiry forward.
    session_ttl_seconds: int = 60 * 60 * 24

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    bcrypt_rounds: int = 12

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("bcrypt_rounds")
    @classmethod
    def validate_bcrypt_rounds(cls, value: int) -> int:
        # bcrypt.gensalt() accepts 4..31
        if not 4 <= value <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        return value

    @field_validator("session_ttl_seconds")
    @classmethod
    def validate_session_ttl(cls, value: int) -> int:
        if value < 1:
            raise ValueError("SESSION_TTL_SECONDS must be a positive integer.")
        return value

    @model_validator(mode="after")
    def require_secret_key(self) -> "Settings":
        """Fill in a throwaway key for local development, refuse one otherwise."""
        if not self.secret_key:
            if not self.debug:
                raise ValueError("SECRET_KEY is required unless DEBUG=true.")
            self.secret_key = secrets.token_hex(32)
            logger.warning("SECRET_KEY not set; generated a temporary one. Sessions end on restart.")
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide Settings, built on first use.

    Tests that need other values construct Settings(...) directly or call
    get_settings.cache_clear() after changing the environment.
    """
    return Settings()
