from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache

from dotenv import load_dotenv

from plans import DEFAULT_CATALOG, PlanCatalog

load_dotenv()

logger = logging.getLogger("planledger.settings")


def _env(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value


def _bool_env(name: str, default: str | None = None) -> bool:
    raw = _env(name, default)
    if raw is None:
        return False
    return raw.strip().lower() in {"1", "true", "yes"}


def _int_env(name: str, default: int) -> int:
    return int(_env(name, str(default)) or default)


def _parse_origins(value: str | None) -> list[str]:
    if not value:
        return []
    origins: list[str] = []
    for origin in value.split(","):
        origin = origin.strip()
        if not origin or origin == "*":
            continue
        origins.append(origin.rstrip("/"))
    return origins


@dataclass(frozen=True)
class Settings:
    database_url: str | None
    environment: str = "development"
    callback_timeout_seconds: float = 5.0
    reconcile_queue_size: int = 256
    reconcile_workers: int = 2
    cors_origins: tuple[str, ...] = ()
    payhero_username: str | None = None
    payhero_password: str | None = None
    payhero_channel_id: str | None = None
    payhero_callback_url: str | None = None
    payhero_api_base: str = "https://backend.payhero.co.ke/api/v2"
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None
    smtp_from: str | None = None
    smtp_use_tls: bool = True
    alert_email_to: str | None = None
    plans: PlanCatalog = field(default=DEFAULT_CATALOG)

    @property
    def payhero_configured(self) -> bool:
        return all(
            (
                self.payhero_username,
                self.payhero_password,
                self.payhero_channel_id,
                self.payhero_callback_url,
            )
        )

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_host and self.smtp_from)


def load_settings() -> Settings:
    """Read settings from the environment (and a local .env file, if any)."""
    return Settings(
        database_url=_env("DATABASE_URL"),
        environment=(_env("ENVIRONMENT", "development") or "development").strip().lower(),
        callback_timeout_seconds=float(_env("CALLBACK_TIMEOUT_SECONDS", "5") or 5),
        reconcile_queue_size=_int_env("RECONCILE_QUEUE_SIZE", 256),
        reconcile_workers=_int_env("RECONCILE_WORKERS", 2),
        cors_origins=tuple(_parse_origins(_env("CORS_ORIGINS"))),
        payhero_username=_env("PAYHERO_USERNAME"),
        payhero_password=_env("PAYHERO_PASSWORD"),
        payhero_channel_id=_env("PAYHERO_CHANNEL_ID"),
        payhero_callback_url=_env("CALLBACK_URL"),
        payhero_api_base=(
            _env("PAYHERO_API_BASE", "https://backend.payhero.co.ke/api/v2")
            or "https://backend.payhero.co.ke/api/v2"
        ).rstrip("/"),
        smtp_host=_env("SMTP_HOST"),
        smtp_port=_int_env("SMTP_PORT", 587),
        smtp_user=_env("SMTP_USER"),
        smtp_password=_env("SMTP_PASSWORD"),
        smtp_from=_env("SMTP_FROM"),
        smtp_use_tls=_bool_env("SMTP_USE_TLS", "true"),
        alert_email_to=_env("ALERT_EMAIL_TO"),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()


def validate_settings(settings: Settings) -> None:
    errors: list[str] = []
    warnings: list[str] = []
    if not settings.database_url:
        errors.append("DATABASE_URL is required.")
    if settings.callback_timeout_seconds <= 0:
        errors.append("CALLBACK_TIMEOUT_SECONDS must be greater than zero.")
    if settings.reconcile_queue_size <= 0:
        errors.append("RECONCILE_QUEUE_SIZE must be greater than zero.")
    if settings.reconcile_workers <= 0:
        errors.append("RECONCILE_WORKERS must be greater than zero.")
    if not settings.payhero_configured:
        warnings.append("PayHero credentials not set; STK push disabled.")
    if not settings.smtp_configured or not settings.alert_email_to:
        warnings.append("SMTP or ALERT_EMAIL_TO not set; operator alerts go to the log only.")

    if errors:
        raise RuntimeError("Config errors: " + "; ".join(errors))
    for warning in warnings:
        logger.warning(warning)
