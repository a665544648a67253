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
LOG_LEVEL = os.getenv("ZENZONE_LOG_LEVEL", "INFO").upper()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./zenzone.db")

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))

CORS_ORIGINS = _get_list(
    os.getenv("CORS_ORIGINS"),
    default=["http://localhost:3000", "http://localhost:3001"],
)

UPLOAD_DIR = os.getenv("UPLOAD_DIR", "./uploads")
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))

MAX_MESSAGE_LENGTH = int(os.getenv("MAX_MESSAGE_LENGTH", "5000"))

# Psychiatrists see students under a stable alias instead of their username.
ANONYMIZE_STUDENTS = _get_bool(os.getenv("ANONYMIZE_STUDENTS"), default=True)

# When false, closing an appointment also hides its history from both parties.
CLOSED_HISTORY_READABLE = _get_bool(os.getenv("CLOSED_HISTORY_READABLE"), default=False)

TYPING_QUIET_SECONDS = float(os.getenv("ZENZONE_TYPING_QUIET_SECONDS", "1.0"))
SEND_TIMEOUT_SECONDS = float(os.getenv("ZENZONE_SEND_TIMEOUT_SECONDS", "10"))

# Content moderation is disabled unless a Perspective API key is configured.
PERSPECTIVE_API_KEY = os.getenv("PERSPECTIVE_API_KEY", "")
PERSPECTIVE_BLOCK_THRESHOLD = float(os.getenv("PERSPECTIVE_BLOCK_THRESHOLD", "0.9"))
PERSPECTIVE_WARN_THRESHOLD = float(os.getenv("PERSPECTIVE_WARN_THRESHOLD", "0.75"))
PERSPECTIVE_TIMEOUT_SECONDS = float(os.getenv("PERSPECTIVE_TIMEOUT_SECONDS", "8"))

ANALYTICS_LIST_LIMIT = int(os.getenv("ANALYTICS_LIST_LIMIT", "20"))


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
