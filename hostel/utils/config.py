"""Centralized runtime settings loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[2]


def _env_str(name: str, default: str) -> str:
    return os.getenv(name, default)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    """Immutable settings snapshot; tests derive variants with `replace`."""

    app_name: str = "Hostel Management API"
    app_version: str = "1.0.0"
    database_path: Path = PROJECT_ROOT / "data" / "hostel.db"
    log_level: str = "INFO"
    admin_token: str | None = None
    seed_demo_data: bool = True

    mpesa_base_url: str = "https://sandbox.safaricom.co.ke"
    mpesa_consumer_key: str = ""
    mpesa_consumer_secret: str = ""
    mpesa_shortcode: str = "174379"
    mpesa_passkey: str = ""
    mpesa_callback_url: str = "https://example.com/mpesa/callback"
    mpesa_account_reference: str = "Student Portal"
    mpesa_request_timeout_seconds: float = 10.0
    mpesa_token_expiry_margin_seconds: int = 60

    payment_poll_interval_seconds: float = 5.0
    payment_poll_timeout_seconds: float = 120.0
    payment_method: str = "mpesa"

    phone_country_code: str = "254"
    notification_page_size: int = 10


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    admin_token = os.getenv("ADMIN_TOKEN")
    return Settings(
        app_name=_env_str("APP_NAME", Settings.app_name),
        app_version=_env_str("APP_VERSION", Settings.app_version),
        database_path=Path(_env_str("DATABASE_PATH", str(Settings.database_path))),
        log_level=_env_str("LOG_LEVEL", Settings.log_level),
        admin_token=admin_token or None,
        seed_demo_data=_env_bool("SEED_DEMO_DATA", Settings.seed_demo_data),
        mpesa_base_url=_env_str("MPESA_BASE_URL", Settings.mpesa_base_url).rstrip("/"),
        mpesa_consumer_key=_env_str("MPESA_CONSUMER_KEY", Settings.mpesa_consumer_key),
        mpesa_consumer_secret=_env_str(
            "MPESA_CONSUMER_SECRET", Settings.mpesa_consumer_secret
        ),
        mpesa_shortcode=_env_str("MPESA_SHORTCODE", Settings.mpesa_shortcode),
        mpesa_passkey=_env_str("MPESA_PASSKEY", Settings.mpesa_passkey),
        mpesa_callback_url=_env_str("MPESA_CALLBACK_URL", Settings.mpesa_callback_url),
        mpesa_account_reference=_env_str(
            "MPESA_ACCOUNT_REFERENCE", Settings.mpesa_account_reference
        ),
        mpesa_request_timeout_seconds=_env_float(
            "MPESA_REQUEST_TIMEOUT_SECONDS", Settings.mpesa_request_timeout_seconds
        ),
        payment_poll_interval_seconds=_env_float(
            "PAYMENT_POLL_INTERVAL_SECONDS", Settings.payment_poll_interval_seconds
        ),
        payment_poll_timeout_seconds=_env_float(
            "PAYMENT_POLL_TIMEOUT_SECONDS", Settings.payment_poll_timeout_seconds
        ),
        phone_country_code=_env_str("PHONE_COUNTRY_CODE", Settings.phone_country_code),
        notification_page_size=_env_int(
            "NOTIFICATION_PAGE_SIZE", Settings.notification_page_size
        ),
    )
