import os
from dataclasses import dataclass

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]

APP_ENV = os.getenv("APP_ENV", "development")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./booking.db")
DATABASE_ECHO = _get_bool(os.getenv("DATABASE_ECHO"), default=False)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

CORS_ALLOW_ORIGINS = _get_list(os.getenv("CORS_ALLOW_ORIGINS"), ["http://localhost:3000"])

BOOKING_SLOT_INTERVAL_MINUTES = int(os.getenv("BOOKING_SLOT_INTERVAL_MINUTES", "30"))
MIN_BOOKING_LEAD_TIME_HOURS = int(os.getenv("MIN_BOOKING_LEAD_TIME_HOURS", "24"))
MAX_BOOKING_ADVANCE_DAYS = int(os.getenv("MAX_BOOKING_ADVANCE_DAYS", "60"))
MAX_SERVICE_DURATION_MINUTES = int(os.getenv("MAX_SERVICE_DURATION_MINUTES", "480"))

BOOKING_LOCK_MAX_ATTEMPTS = int(os.getenv("BOOKING_LOCK_MAX_ATTEMPTS", "3"))
BOOKING_LOCK_RETRY_DELAY_SECONDS = float(os.getenv("BOOKING_LOCK_RETRY_DELAY_SECONDS", "0.05"))

MAX_BOOKING_NOTES_LENGTH = int(os.getenv("MAX_BOOKING_NOTES_LENGTH", "500"))

NOTIFICATION_WORKERS = int(os.getenv("NOTIFICATION_WORKERS", "2"))
RESEND_API_KEY = os.getenv("RESEND_API_KEY", "")
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "NappyMarket <noreply@nappymarket.fr>")

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))


@dataclass(frozen=True)
class SchedulingSettings:
    """Tunables consumed by slot generation and booking validation."""

    slot_interval_minutes: int = BOOKING_SLOT_INTERVAL_MINUTES
    min_lead_time_hours: int = MIN_BOOKING_LEAD_TIME_HOURS
    max_advance_days: int = MAX_BOOKING_ADVANCE_DAYS
    max_service_duration_minutes: int = MAX_SERVICE_DURATION_MINUTES
    lock_max_attempts: int = BOOKING_LOCK_MAX_ATTEMPTS
    lock_retry_delay_seconds: float = BOOKING_LOCK_RETRY_DELAY_SECONDS


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if BOOKING_SLOT_INTERVAL_MINUTES <= 0:
        raise RuntimeError("BOOKING_SLOT_INTERVAL_MINUTES must be positive.")
    if MIN_BOOKING_LEAD_TIME_HOURS < 0:
        raise RuntimeError("MIN_BOOKING_LEAD_TIME_HOURS cannot be negative.")
    if MAX_BOOKING_ADVANCE_DAYS <= 0:
        raise RuntimeError("MAX_BOOKING_ADVANCE_DAYS must be positive.")
    if BOOKING_LOCK_MAX_ATTEMPTS <= 0:
        raise RuntimeError("BOOKING_LOCK_MAX_ATTEMPTS must be positive.")
