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
DEBUG = _get_bool(os.getenv("DEBUG"), default=False)
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./appointments.db")
DATABASE_ECHO = _get_bool(os.getenv("DATABASE_ECHO"), default=False)

CORS_ALLOWED_ORIGINS = _get_list(os.getenv("CORS_ALLOWED_ORIGINS"), ["http://localhost:3000"])

# Healthcare entity lookups (timezone) are served by the user service.
USER_SERVICE_URL = os.getenv("USER_SERVICE_URL", "http://user-service:8081")
ENTITY_LOOKUP_TIMEOUT_SECONDS = float(os.getenv("ENTITY_LOOKUP_TIMEOUT_SECONDS", "5"))
TIMEZONE_CACHE_TTL_SECONDS = int(os.getenv("TIMEZONE_CACHE_TTL_SECONDS", "3600"))

MIN_APPOINTMENT_DURATION_MINUTES = 15
MAX_APPOINTMENT_DURATION_MINUTES = 480

SLOT_STEP_MINUTES = int(os.getenv("SLOT_STEP_MINUTES", "30"))
ALTERNATIVE_SEARCH_DAYS = int(os.getenv("ALTERNATIVE_SEARCH_DAYS", "7"))
ALTERNATIVES_PER_DAY = int(os.getenv("ALTERNATIVES_PER_DAY", "3"))
MAX_ALTERNATIVE_SLOTS = int(os.getenv("MAX_ALTERNATIVE_SLOTS", "10"))

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and DATABASE_URL.startswith("sqlite"):
        raise RuntimeError("DATABASE_URL must point at Postgres in production.")
    if SLOT_STEP_MINUTES <= 0:
        raise RuntimeError("SLOT_STEP_MINUTES must be a positive number of minutes.")
