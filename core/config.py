"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the identity service happen here. No module
should call os.getenv() or os.environ.get() directly -- import get_settings()
instead, or better, accept the values you need in your constructor and let the
composition root (api/main.py, main.py) pass them in.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): cross-field validation once every field is
      resolved. Used for the DEBUG-conditional SECRET_KEY policy.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. Session and one-time
  token digests are HMAC-SHA256 keyed with it -- a short key weakens both.

  In production mode (DEBUG not set or false), a missing SECRET_KEY is a hard
  startup failure: a random key would orphan every stored session digest on
  restart.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
or notify/.
"""

import logging
import secrets
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("identity.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'identity.db'}"


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

    app_name: str = "MapVision Analytics"
    app_url: str = "http://localhost:8000"
    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL
    # JSON lists in the environment, e.g. ALLOWED_HOSTS='["auth.example.com"]'
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    session_duration_seconds: int = 86400  # 24 hours, slid forward on activity
    remember_me_duration_seconds: int = 2592000  # 30 days
    session_cookie_name: str = "session_token"
    secure_cookies: bool = False
    # Strict mode destroys a session whose request address differs from the
    # bound one. Default mode only compares subnets and logs a warning.
    strict_ip_checking: bool = False
    ipv4_subnet_prefix: int = 24
    ipv6_subnet_prefix: int = 64

    # ------------------------------------------------------------------
    # One-time tokens
    # ------------------------------------------------------------------

    password_reset_ttl_seconds: int = 3600
    email_verification_ttl_seconds: int = 86400

    # ------------------------------------------------------------------
    # Credentials and lockout
    # ------------------------------------------------------------------

    max_login_attempts: int = 5
    lockout_duration_seconds: int = 900
    require_email_verification: bool = True
    require_strong_passwords: bool = False
    password_min_length: int = 8
    # MX/A lookup during registration. Off in tests and air-gapped installs.
    check_email_deliverability: bool = True

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    rate_limit_storage_uri: str = "memory://"
    login_rate_limit: str = "10/minute"
    registration_limit_per_ip_per_hour: int = 5
    password_reset_limit_per_minute: int = 3
    resend_verification_limit_per_minute: int = 1
    admin_toggle_limit_per_minute: int = 20
    admin_bulk_limit_per_minute: int = 5
    admin_maintenance_limit_per_minute: int = 2
    admin_export_limit_per_minute: int = 3
    admin_notification_limit_per_minute: int = 10

    # ------------------------------------------------------------------
    # Monitoring
    # ------------------------------------------------------------------

    failed_login_alert_threshold: int = 10  # per trailing hour
    long_session_alert_hours: int = 12
    unverified_alert_hours: int = 24
    access_log_retention_days: int = 180
    maintenance_interval_seconds: int = 15 * 60

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    # Empty string means "no relay configured" -- messages are logged only.
    mail_relay_url: str = ""
    mail_relay_token: str = ""
    mail_from: str = "noreply@localhost"
    notification_retry_attempts: int = 3
    notification_retry_delay_seconds: float = 5.0

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Stored session digests will not match after a restart.

        Production mode: refuse to start if SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
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


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()


def utc_now() -> datetime:
    """Default clock for every component. Tests inject their own callable."""
    return datetime.now(timezone.utc)
