"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for DocRoom happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  Optional providers: every managed service (Upstash Redis, QStash, Resend,
      Unsend, Slack, Hanko) is configured by one or more fields whose empty
      string value means "not configured". services/registry.py reads the
      *_configured properties below once at startup and picks the live or the
      disabled implementation for each capability.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. HMAC-SHA256 and
       JWT signing both rely on key entropy -- a short key weakens both.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure.

Layer rule: core/ is the kernel. This module may not import from api/, web/,
auth/, services/, integrations/ or teams/.
"""

import logging
import secrets
from functools import lru_cache
from urllib.parse import urlparse

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("docroom.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
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
    environment: str = "development"  # "development" | "production"
    app_name: str = "DocRoom"
    base_url: str = "http://localhost:8000"
    database_url: str = ""  # empty -> per-store SQLite file next to the module
    is_self_hosted: bool = False
    # Host header allow-list. The host of BASE_URL is always added.
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    token_expire_seconds: int = 3600
    # Secret for signed URL checksums. Falls back to SECRET_KEY when empty.
    verification_secret: str = ""

    # ------------------------------------------------------------------
    # Temporary store (pending email changes)
    # ------------------------------------------------------------------

    upstash_redis_rest_url: str = ""
    upstash_redis_rest_token: str = ""
    # SQLAlchemy URL for the single-node SQLite temporary store. Only used
    # when Upstash is not configured. Empty means no temporary store at all.
    temp_store_url: str = ""

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    # limits storage URI ("redis://...", "rediss://...", "memory://").
    # Empty disables the sliding-window limiter (no limiting).
    ratelimit_storage_uri: str = ""

    # ------------------------------------------------------------------
    # Job queue (QStash)
    # ------------------------------------------------------------------

    qstash_token: str = ""
    qstash_url: str = "https://qstash.upstash.io"
    qstash_current_signing_key: str = ""
    qstash_next_signing_key: str = ""

    # ------------------------------------------------------------------
    # Email (Resend) and mailing list (Unsend)
    # ------------------------------------------------------------------

    resend_api_key: str = ""
    email_from_system: str = "DocRoom <system@docroom.local>"
    email_from_marketing: str = "DocRoom <hello@docroom.local>"
    unsend_api_key: str = ""
    unsend_base_url: str = "https://app.unsend.dev"
    unsend_contact_book_id: str = ""

    # ------------------------------------------------------------------
    # Slack integration
    # ------------------------------------------------------------------

    slack_client_id: str = ""
    slack_client_secret: str = ""
    slack_integration_id: str = ""

    # ------------------------------------------------------------------
    # Hanko passkeys
    # ------------------------------------------------------------------

    hanko_api_key: str = ""
    hanko_tenant_id: str = ""
    hanko_api_url: str = "https://passkeys.hanko.io"

    # ------------------------------------------------------------------
    # Background tasks
    # ------------------------------------------------------------------

    # Run post-response tasks inline instead of on the worker. Tests and the
    # management CLI set this; the server never should.
    tasks_eager: bool = False
    task_max_attempts: int = 3

    # ------------------------------------------------------------------
    # Derived flags
    # ------------------------------------------------------------------

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def trusted_hosts(self) -> list[str]:
        host = urlparse(self.base_url).hostname
        if host and host not in self.allowed_hosts:
            return [*self.allowed_hosts, host]
        return list(self.allowed_hosts)

    @property
    def redis_configured(self) -> bool:
        return bool(self.upstash_redis_rest_url and self.upstash_redis_rest_token)

    @property
    def qstash_configured(self) -> bool:
        return bool(self.qstash_token)

    @property
    def resend_configured(self) -> bool:
        return bool(self.resend_api_key)

    @property
    def unsend_configured(self) -> bool:
        return bool(self.unsend_api_key and self.unsend_contact_book_id)

    @property
    def slack_configured(self) -> bool:
        return bool(self.slack_client_id and self.slack_client_secret and self.slack_integration_id)

    @property
    def hanko_configured(self) -> bool:
        return bool(self.hanko_api_key and self.hanko_tenant_id)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.
        Both modes: reject keys shorter than 32 characters [M6].
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
