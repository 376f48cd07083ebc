"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Markpost happen here. No module should call
os.getenv() or os.environ.get() directly.

Design:
  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  Explicit injection: get_settings() is called only by the entry points
      (asgi.py and main.py). Components receive the values they need through
      their constructors, so nothing below the entry points reads config as
      ambient global state and tests can build a Settings(...) per case.

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Invalid database or secret configuration raises at construction,
      which makes a misconfigured deployment fail at startup instead of serving
      confusing runtime errors.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. JWT signing relies on
  key entropy -- a short key weakens every issued token.

  In production mode (DEBUG not set or false), a missing SECRET_KEY is a hard
  startup failure.

Layer rule: core/ is the kernel. This module may not import from api/, web/,
auth/, or posts/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("markpost.config")

_SUPPORTED_DB_TYPES = ("sqlite", "postgresql")
_SQLITE_SUFFIXES = (".sqlite3", ".sqlite", ".db")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (DEBUG=true still needed for the
    secret key). The model validators enforce the startup-fatal rules.
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

    database_type: str = "sqlite"
    database_url: str = "markpost.db"

    # ------------------------------------------------------------------
    # GitHub OAuth (empty string means the provider is not configured)
    # ------------------------------------------------------------------

    github_client_id: str = ""
    github_client_secret: str = ""
    github_redirect_url: str = ""

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    access_token_expire_seconds: int = Field(default=24 * 3600, gt=0)
    refresh_token_expire_seconds: int = Field(default=30 * 24 * 3600, gt=0)

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    # Global token bucket, requests per minute. 0 disables it.
    api_rate_limit: int = Field(default=60, ge=0)
    rate_limit_ip_per_minute: int = Field(default=100, gt=0)
    rate_limit_ip_per_day: int = Field(default=1000, gt=0)
    rate_limit_post_key_per_minute: int = Field(default=10, gt=0)
    rate_limit_post_key_per_day: int = Field(default=100, gt=0)
    # True: a broken limiter backend lets requests through (logged at ERROR).
    # False: the request is refused with 503.
    rate_limit_fail_open: bool = True

    # ------------------------------------------------------------------
    # Content limits (UTF-8 bytes; 0 disables the check)
    # ------------------------------------------------------------------

    title_max_size: int = Field(default=1000, ge=0)
    body_max_size: int = Field(default=10 * 1024 * 1024, ge=0)

    # ------------------------------------------------------------------
    # Data retention
    # ------------------------------------------------------------------

    post_retention_days: int = 7
    # Interval of the in-process sweeper. 0 leaves cleanup to the CLI.
    cleanup_interval_hours: int = Field(default=24, ge=0)

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    cors_origins: list[str] = ["http://localhost", "http://localhost:5173", "http://127.0.0.1"]
    allowed_hosts: list[str] = ["*"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Tokens will not persist across restarts.")
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
    def validate_database(self) -> "Settings":
        """Validate DATABASE_TYPE / DATABASE_URL.

        The type is normalized to lowercase. Unsupported types, empty URLs and
        malformed URLs all raise, which pydantic surfaces as ValidationError.
        """
        self.database_type = self.database_type.strip().lower()
        if self.database_type not in _SUPPORTED_DB_TYPES:
            raise ValueError(
                f"Unsupported database type {self.database_type!r}. Supported types: sqlite, postgresql"
            )
        url = self.database_url.strip()
        if not url:
            raise ValueError("DATABASE_URL cannot be empty")
        self.database_url = url

        if self.database_type == "sqlite":
            _validate_sqlite_url(url)
        else:
            _validate_postgresql_url(url)
        return self

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def sqlalchemy_url(self) -> str:
        """Return the SQLAlchemy engine URL for the configured database."""
        if self.database_type == "sqlite":
            if self.database_url == ":memory:":
                return "sqlite://"
            return f"sqlite:///{self.database_url}"
        if self.database_url.startswith("postgres://"):
            # SQLAlchemy only accepts the long scheme name.
            return "postgresql://" + self.database_url[len("postgres://") :]
        return self.database_url

    @property
    def github_configured(self) -> bool:
        return bool(self.github_client_id and self.github_client_secret)


def _validate_sqlite_url(url: str) -> None:
    if url == ":memory:":
        return
    if not url.endswith(_SQLITE_SUFFIXES):
        raise ValueError(f"SQLite database file should have extension .sqlite3, .sqlite, or .db, got: {url}")
    path = Path(url)
    if not path.is_absolute():
        parent = path.parent
        if str(parent) != "." and not parent.exists():
            raise ValueError(f"SQLite database directory does not exist: {parent}")


def _validate_postgresql_url(url: str) -> None:
    if not url.startswith(("postgres://", "postgresql://")):
        raise ValueError(f"PostgreSQL URL must start with 'postgres://' or 'postgresql://', got: {url}")
    if "@" not in url:
        # Do not echo the URL here -- it may carry a password.
        raise ValueError("PostgreSQL URL must contain credentials (username:password@host)")


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Only entry points (asgi.py, main.py) call this. In tests: construct
    Settings(...) directly or call get_settings.cache_clear() between cases.
    """
    return Settings()
