import os



def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    return int(value)


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if value is None:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]

APP_ENV = os.getenv("APP_ENV", "development")
DEBUG = _get_bool(os.getenv("DEBUG"), default=False)

CORS_ALLOWED_ORIGINS = _get_list(os.getenv("CORS_ALLOWED_ORIGINS"), ["http://localhost:5173"])

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))

# Scheduling policy
DEFAULT_SLOT_MINUTES = _get_int(os.getenv("DEFAULT_SLOT_MINUTES"), 30)
MIN_BOOKING_LEAD_MINUTES = max(0, _get_int(os.getenv("MIN_BOOKING_LEAD_MINUTES"), 60))
PATIENT_CANCEL_CUTOFF_MINUTES = max(0, _get_int(os.getenv("PATIENT_CANCEL_CUTOFF_MINUTES"), 0))
BOOKING_HORIZON_DAYS = _get_int(os.getenv("BOOKING_HORIZON_DAYS"), 90)
MAX_APPOINTMENT_NOTES_LENGTH = _get_int(os.getenv("MAX_APPOINTMENT_NOTES_LENGTH"), 600)

def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if DEFAULT_SLOT_MINUTES <= 0:
        raise RuntimeError("DEFAULT_SLOT_MINUTES must be a positive number of minutes.")
