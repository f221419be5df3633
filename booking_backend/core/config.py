import os

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


APP_ENV = os.getenv("APP_ENV", "development")
DEBUG = _get_bool(os.getenv("DEBUG"), default=False)
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./booking.db")

CORS_ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ALLOWED_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]

# Wall-clock zone every date/time pair is expressed in.
CLINIC_TIMEZONE = os.getenv("CLINIC_TIMEZONE", "UTC")

CANCELLATION_CUTOFF_MINUTES = _get_int("CANCELLATION_CUTOFF_MINUTES", 120)
NO_SHOW_GRACE_MINUTES = _get_int("NO_SHOW_GRACE_MINUTES", 0)
SAME_DAY_LEAD_MINUTES = _get_int("SAME_DAY_LEAD_MINUTES", 15)
MAX_BOOKING_ADVANCE_DAYS = _get_int("MAX_BOOKING_ADVANCE_DAYS", 90)
DEFAULT_SLOT_DURATION_MINUTES = _get_int("DEFAULT_SLOT_DURATION_MINUTES", 30)
SUMMARY_DEFAULT_DAYS = _get_int("SUMMARY_DEFAULT_DAYS", 7)

STORE_RETRY_ATTEMPTS = _get_int("STORE_RETRY_ATTEMPTS", 3)
STORE_RETRY_BASE_DELAY_SECONDS = _get_float("STORE_RETRY_BASE_DELAY_SECONDS", 0.1)

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if CANCELLATION_CUTOFF_MINUTES < 0:
        raise RuntimeError("CANCELLATION_CUTOFF_MINUTES cannot be negative.")
    if NO_SHOW_GRACE_MINUTES < 0:
        raise RuntimeError("NO_SHOW_GRACE_MINUTES cannot be negative.")
    if STORE_RETRY_ATTEMPTS < 1:
        raise RuntimeError("STORE_RETRY_ATTEMPTS must be at least 1.")
    if DEFAULT_SLOT_DURATION_MINUTES <= 0:
        raise RuntimeError("DEFAULT_SLOT_DURATION_MINUTES must be positive.")
