import os

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip().lower() for item in value.split(",") if item.strip()]

APP_ENV = os.getenv("APP_ENV", "development")

DATABASE_URL = os.getenv("DATABASE_URL", "")
DATABASE_ECHO = _get_bool(os.getenv("DATABASE_ECHO"), default=False)
SQLITE_FOREIGN_KEYS = _get_bool(os.getenv("SQLITE_FOREIGN_KEYS"), default=True)

ERROR_FORMATS = ("pretty", "colorless", "minimal")

CLIENT_LOG_LEVELS = _get_list(os.getenv("CLIENT_LOG_LEVELS", "warn,error"))
CLIENT_ERROR_FORMAT = os.getenv("CLIENT_ERROR_FORMAT", "colorless").strip().lower()

TRANSACTION_MAX_WAIT_MS = int(os.getenv("TRANSACTION_MAX_WAIT_MS", "2000"))
TRANSACTION_TIMEOUT_MS = int(os.getenv("TRANSACTION_TIMEOUT_MS", "5000"))
TRANSACTION_ISOLATION_LEVEL = os.getenv("TRANSACTION_ISOLATION_LEVEL", "").strip().upper() or None

def validate_runtime_config() -> None:
    if not DATABASE_URL:
        raise RuntimeError("DATABASE_URL must be set.")
    if CLIENT_ERROR_FORMAT not in ERROR_FORMATS:
        raise RuntimeError(f"CLIENT_ERROR_FORMAT must be one of {', '.join(ERROR_FORMATS)}.")
