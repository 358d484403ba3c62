import os

from dotenv import load_dotenv


load_dotenv()


def _get_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    return int(value.strip())


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if value is None:
        return default
    return [item.strip() for item in value.split(',') if item.strip()]

APP_ENV = os.getenv("APP_ENV", "development")

DEVELOPMENT_DATABASE_URL = "sqlite:///./atendimentos.db"
DATABASE_URL = os.getenv("DATABASE_URL", DEVELOPMENT_DATABASE_URL)

CORS_ALLOWED_ORIGINS = _get_list(os.getenv("CORS_ALLOWED_ORIGINS"), ["http://localhost:3000"])

SLOT_STEP_MINUTES = _get_int(os.getenv("SLOT_STEP_MINUTES"), 30)
BOOKING_LEAD_TIME_MINUTES = _get_int(os.getenv("BOOKING_LEAD_TIME_MINUTES"), 120)
BOOKING_WINDOW_DAYS = _get_int(os.getenv("BOOKING_WINDOW_DAYS"), 7)
DEFAULT_SERVICE_DURATION_MINUTES = _get_int(os.getenv("DEFAULT_SERVICE_DURATION_MINUTES"), 60)

DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "America/Sao_Paulo")

def validate_runtime_config() -> None:
    for name in (
        "SLOT_STEP_MINUTES",
        "BOOKING_WINDOW_DAYS",
        "DEFAULT_SERVICE_DURATION_MINUTES",
    ):
        if globals()[name] <= 0:
            raise RuntimeError(f"{name} must be a positive number of minutes or days.")

    # Zero turns the buffer off.
    if BOOKING_LEAD_TIME_MINUTES < 0:
        raise RuntimeError("BOOKING_LEAD_TIME_MINUTES must not be negative.")

    if APP_ENV.lower() == "production" and DATABASE_URL == DEVELOPMENT_DATABASE_URL:
        raise RuntimeError("DATABASE_URL must be set in production.")
