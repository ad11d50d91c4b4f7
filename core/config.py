"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for JWT Pizza happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY, factory_url -> FACTORY_URL).

  @model_validator(mode="after"): dev mode generates a SECRET_KEY with a
      warning, production mode refuses to start without one.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. Session tokens are
  HS256 JWTs; a short key weakens every issued session.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, or pizza/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("pizza.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent.parent / 'pizza.db'}"


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
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""

    # ------------------------------------------------------------------
    # Database
    # ------------------------------------------------------------------

    database_url: str = _DEFAULT_DB_URL
    # Page size for GET /api/order.
    list_per_page: int = 10

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    # bcrypt cost factor. 10 matches the work factor of existing password
    # hashes; tests drop it to 4 (the bcrypt minimum).
    password_hash_rounds: int = 10
    # 0 = tokens carry no exp claim; the auth ledger alone ends a session.
    token_expire_seconds: int = 0
    login_rate_limit: str = "10/minute"

    # Optional first-run admin. Seeded only when the user table is empty.
    admin_name: str = "pizza admin"
    admin_email: str = ""
    admin_password: str = ""

    # ------------------------------------------------------------------
    # Pizza factory
    # ------------------------------------------------------------------

    factory_url: str = "https://pizza-factory.cs329.click"
    factory_api_key: str = ""

    # ------------------------------------------------------------------
    # Observability (empty url = disabled)
    # ------------------------------------------------------------------

    logging_url: str = ""
    logging_source: str = "jwt-pizza-service"
    logging_user_id: str = ""
    logging_api_key: str = ""

    metrics_url: str = ""
    metrics_source: str = "jwt-pizza-service"
    metrics_api_key: str = ""
    metrics_interval_seconds: int = 5

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Issued tokens will not verify after a restart.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated SECRET_KEY. " "Sessions will not persist across restarts."
                )
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
