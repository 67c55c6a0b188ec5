"""Runtime configuration loaded from the environment."""

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


def _float_env(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


@dataclass(frozen=True)
class Settings:
    app_env: str
    log_level: str
    database_url: str
    database_echo: bool

    # Google Calendar
    google_client_id: Optional[str]
    google_client_secret: Optional[str]
    google_redirect_uri: Optional[str]
    encryption_key: Optional[str]
    calendar_timeout_seconds: float
    calendar_max_attempts: int
    calendar_backoff_seconds: float
    calendar_webhook_url: Optional[str]
    calendar_channel_ttl_seconds: int

    # Scheduling defaults
    default_timezone: str
    slot_step_minutes: int

    # Twilio
    twilio_account_sid: Optional[str]
    twilio_auth_token: Optional[str]
    twilio_phone_number: Optional[str]


def _database_url() -> str:
    url = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./bookingsync.db")
    # Plain driver-less URLs get the async driver
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    elif url.startswith("sqlite://"):
        url = url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


@lru_cache
def get_settings() -> Settings:
    return Settings(
        app_env=os.getenv("APP_ENV", "development"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        database_url=_database_url(),
        database_echo=os.getenv("DATABASE_ECHO", "false").lower() == "true",
        google_client_id=os.getenv("GOOGLE_CLIENT_ID"),
        google_client_secret=os.getenv("GOOGLE_CLIENT_SECRET"),
        google_redirect_uri=os.getenv("GOOGLE_REDIRECT_URI"),
        encryption_key=os.getenv("ENCRYPTION_KEY"),
        calendar_timeout_seconds=_float_env("GOOGLE_CALENDAR_TIMEOUT_SECONDS", 10.0),
        calendar_max_attempts=_int_env("GOOGLE_CALENDAR_MAX_ATTEMPTS", 3),
        calendar_backoff_seconds=_float_env("GOOGLE_CALENDAR_BACKOFF_SECONDS", 0.5),
        calendar_webhook_url=os.getenv("GOOGLE_CALENDAR_WEBHOOK_URL"),
        calendar_channel_ttl_seconds=_int_env("GOOGLE_CALENDAR_CHANNEL_TTL_SECONDS", 7 * 24 * 3600),
        default_timezone=os.getenv("DEFAULT_TIMEZONE", "Australia/Sydney"),
        slot_step_minutes=_int_env("SLOT_STEP_MINUTES", 30),
        twilio_account_sid=os.getenv("TWILIO_ACCOUNT_SID"),
        twilio_auth_token=os.getenv("TWILIO_AUTH_TOKEN"),
        twilio_phone_number=os.getenv("TWILIO_PHONE_NUMBER"),
    )
