import os

from dotenv import load_dotenv


load_dotenv()


def _get_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    return int(value)


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if value is None:
        return default
    items = [item.strip() for item in value.split(",")]
    return [item for item in items if item]


APP_ENV = os.getenv("APP_ENV", "development")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./clinic.db")

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
# 7 days
JWT_EXPIRES_MINUTES = _get_int(os.getenv("JWT_EXPIRES_MINUTES"), 60 * 24 * 7)

CANCEL_CUTOFF_MINUTES = _get_int(os.getenv("CANCEL_CUTOFF_MINUTES"), 60)

BCRYPT_ROUNDS = _get_int(os.getenv("BCRYPT_ROUNDS"), 12)

CORS_ALLOW_ORIGINS = _get_list(os.getenv("CORS_ALLOW_ORIGINS"), ["*"])

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if CANCEL_CUTOFF_MINUTES < 0:
        raise RuntimeError("CANCEL_CUTOFF_MINUTES must not be negative.")
