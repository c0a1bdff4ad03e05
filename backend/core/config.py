import os

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
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./doctor_booking.db")
DATABASE_ECHO = _get_bool(os.getenv("DATABASE_ECHO"), default=False)

CORS_ORIGINS = _get_list(os.getenv("CORS_ORIGINS"), ["http://localhost:3000"])

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))

# Daily booking grid: one slot per hour, first and last start hour inclusive.
SLOT_HORIZON_DAYS = int(os.getenv("SLOT_HORIZON_DAYS", "7"))
DAY_START_HOUR = int(os.getenv("DAY_START_HOUR", "9"))
DAY_END_HOUR = int(os.getenv("DAY_END_HOUR", "17"))

DEFAULT_PATIENT_LIMIT = int(os.getenv("DEFAULT_PATIENT_LIMIT", "1"))
MAX_PATIENT_LIMIT = int(os.getenv("MAX_PATIENT_LIMIT", "10"))
NEAR_CAPACITY_RATIO = float(os.getenv("NEAR_CAPACITY_RATIO", "0.8"))
MAX_AVAILABILITY_RANGE_DAYS = int(os.getenv("MAX_AVAILABILITY_RANGE_DAYS", "60"))

SLOT_LOCK_TIMEOUT_SECONDS = float(os.getenv("SLOT_LOCK_TIMEOUT_SECONDS", "5"))
NO_SHOW_GRACE_MINUTES = int(os.getenv("NO_SHOW_GRACE_MINUTES", "60"))


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if DAY_START_HOUR > DAY_END_HOUR:
        raise RuntimeError("DAY_START_HOUR must not be after DAY_END_HOUR.")
    if DEFAULT_PATIENT_LIMIT < 1 or DEFAULT_PATIENT_LIMIT > MAX_PATIENT_LIMIT:
        raise RuntimeError("DEFAULT_PATIENT_LIMIT must be between 1 and MAX_PATIENT_LIMIT.")
