"""
Event Report API - Runtime Configuration
=========================================

All settings come from the environment (a local .env is loaded by the entry
point). Two logical databases are configured separately:

- Warehouse: read-only analytical cluster (payments, events, price tiers...)
- Application: writable store for recipients and scheduled reports

Third-party integrations (payment gateway, email, scheduler) are optional at
startup; the operation that needs a missing key fails with a configuration
error instead of the whole service refusing to boot.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional


DEFAULT_HOST_USER_ID = 10111198
DEFAULT_REPORT_TIMEZONE = "America/New_York"
DEFAULT_GATEWAY_URL = "https://test-api.payrix.com"
DEFAULT_RESEND_URL = "https://api.resend.com"
DEFAULT_TRIGGER_URL = "https://api.trigger.dev"


def _clean(value: Optional[str]) -> Optional[str]:
    """Strip whitespace and surrounding quotes; empty becomes None."""
    if value is None:
        return None
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        value = value[1:-1].strip()
    return value or None


def _env(*names: str, default: Optional[str] = None) -> Optional[str]:
    """First non-empty value among several variable names."""
    for name in names:
        value = _clean(os.getenv(name))
        if value is not None:
            return value
    return default


def _env_int(name: str, default: int) -> int:
    value = _clean(os.getenv(name))
    try:
        return int(value) if value is not None else default
    except ValueError:
        return default


def _warehouse_url() -> Optional[str]:
    url = _env("WAREHOUSE_DATABASE_URL", "DATABASE_URL", "CRUNCHYBRIDGE_DATABASE_URL")
    if url:
        return url

    # Fallback to discrete variables
    host = _env("DB_HOST")
    name = _env("DB_DATABASE", "DB_NAME")
    if not (host and name):
        return None
    user = _env("DB_USER", default="")
    password = _env("DB_PASSWORD", default="")
    port = _env_int("DB_PORT", 5432)
    return f"postgresql+psycopg2://{user}:{password}@{host}:{port}/{name}"


def normalize_database_url(url: Optional[str]) -> Optional[str]:
    """Pin the psycopg2 driver on bare postgres:// URLs."""
    if not url:
        return url
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    if url.startswith("postgresql://"):
        url = "postgresql+psycopg2://" + url[len("postgresql://"):]
    return url


@dataclass(frozen=True)
class Settings:
    warehouse_url: Optional[str] = None
    app_database_url: Optional[str] = None

    # Pool sizing and timeouts (milliseconds, as the ops team sets them)
    db_max_connections: int = 10
    db_idle_timeout_ms: int = 10000
    db_connection_timeout_ms: int = 5000
    db_statement_timeout_ms: int = 30000

    gateway_api_key: Optional[str] = None
    gateway_base_url: str = DEFAULT_GATEWAY_URL
    zip_lookup_delay_ms: int = 100

    resend_api_key: Optional[str] = None
    resend_from_email: Optional[str] = None
    resend_base_url: str = DEFAULT_RESEND_URL

    trigger_secret_key: Optional[str] = None
    trigger_api_url: str = DEFAULT_TRIGGER_URL
    trigger_task_id: str = "daily-event-report"

    default_host_user_id: int = DEFAULT_HOST_USER_ID
    report_timezone: str = DEFAULT_REPORT_TIMEZONE
    app_env: str = "production"
    log_level: str = "INFO"
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    @property
    def debug(self) -> bool:
        """Error details are only exposed to callers in development."""
        return self.app_env == "development"

    @property
    def zip_lookup_delay(self) -> float:
        return self.zip_lookup_delay_ms / 1000.0

    @classmethod
    def from_env(cls) -> "Settings":
        origins = _env("CORS_ORIGINS", default="*")
        return cls(
            warehouse_url=normalize_database_url(_warehouse_url()),
            app_database_url=normalize_database_url(
                _env("APP_DATABASE_URL", "SUPABASE_DATABASE_URL")
            ),
            db_max_connections=_env_int("DB_MAX_CONNECTIONS", 10),
            db_idle_timeout_ms=_env_int("DB_IDLE_TIMEOUT", 10000),
            db_connection_timeout_ms=_env_int("DB_CONNECTION_TIMEOUT", 5000),
            db_statement_timeout_ms=_env_int("DB_STATEMENT_TIMEOUT", 30000),
            gateway_api_key=_env("PAYMENT_GATEWAY_API_KEY", "WORLDPAY_API_KEY"),
            gateway_base_url=_env("PAYMENT_GATEWAY_BASE_URL", default=DEFAULT_GATEWAY_URL),
            zip_lookup_delay_ms=_env_int("ZIP_LOOKUP_DELAY_MS", 100),
            resend_api_key=_env("RESEND_API_KEY"),
            resend_from_email=_env("RESEND_FROM_EMAIL"),
            resend_base_url=_env("RESEND_BASE_URL", default=DEFAULT_RESEND_URL),
            trigger_secret_key=_env("TRIGGER_SECRET_KEY"),
            trigger_api_url=_env("TRIGGER_API_URL", default=DEFAULT_TRIGGER_URL),
            trigger_task_id=_env("TRIGGER_TASK_ID", default="daily-event-report"),
            default_host_user_id=_env_int("DEFAULT_HOST_USER_ID", DEFAULT_HOST_USER_ID),
            report_timezone=_env("REPORT_TIMEZONE", default=DEFAULT_REPORT_TIMEZONE),
            app_env=(_env("APP_ENV", "NODE_ENV", default="production") or "production").lower(),
            log_level=(_env("LOG_LEVEL", default="INFO") or "INFO").upper(),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
        )
