"""
Настройки сервиса посещаемости. Все значения читаются из переменных окружения.
"""

import logging
import os

from app.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(name, f"{name} must be an integer, got '{raw}'")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(name, f"{name} must be a number, got '{raw}'")


def _env_list(name: str, default: str) -> list:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


# --- Среда ---
ENVIRONMENT = os.getenv("ENVIRONMENT", "production").strip().lower()
DEBUG = ENVIRONMENT in ("development", "dev", "local")

# --- База данных ---
DB_USER = os.getenv("POSTGRES_USER", "postgres")
DB_PASSWORD = os.getenv("POSTGRES_PASSWORD", "postgres")
DB_NAME = os.getenv("POSTGRES_DB", "attendance")
DB_HOST = os.getenv("POSTGRES_HOST", "db")
DB_PORT = _env_int("POSTGRES_PORT", 5432)

DATABASE_URL = os.getenv("DATABASE_URL") or (
    f"postgresql+asyncpg://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}"
)

# Повтор при обрывах соединения
DB_RETRY_ATTEMPTS = _env_int("DB_RETRY_ATTEMPTS", 3)
DB_RETRY_DELAY = _env_float("DB_RETRY_DELAY", 0.5)
DB_RETRY_BACKOFF_FACTOR = _env_float("DB_RETRY_BACKOFF_FACTOR", 2.0)

# --- JWT: токены выпускает внешний сервис аутентификации ---
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# --- Логи ---
LOG_LEVEL = os.getenv("LOG_LEVEL") or ("DEBUG" if DEBUG else "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT") or ("text" if DEBUG else "json")
SLOW_REQUEST_THRESHOLD = _env_float("SLOW_REQUEST_THRESHOLD", 2.0)

# --- HTTP ---
APP_NAME = os.getenv("APP_NAME", "University Attendance API")
APP_VERSION = os.getenv("APP_VERSION", "1.0.0")
CORS_ORIGINS = _env_list("CORS_ORIGINS", "http://localhost:3000,http://localhost:8080")

# --- Учебные классы ---
DEFAULT_TOTAL_SESSIONS = _env_int("DEFAULT_TOTAL_SESSIONS", 15)
DEFAULT_MAX_ABSENT_ALLOWED = _env_int("DEFAULT_MAX_ABSENT_ALLOWED", 3)


def config_problems() -> list:
    problems = []

    if not JWT_SECRET_KEY:
        problems.append("JWT_SECRET_KEY is not set")
    if not DATABASE_URL:
        problems.append("DATABASE_URL is not set")
    if LOG_FORMAT not in ("text", "json"):
        problems.append("LOG_FORMAT must be 'text' or 'json'")
    if DB_RETRY_ATTEMPTS < 1:
        problems.append("DB_RETRY_ATTEMPTS must be at least 1")
    if DB_RETRY_DELAY < 0:
        problems.append("DB_RETRY_DELAY cannot be negative")
    if DEFAULT_TOTAL_SESSIONS < 1:
        problems.append("DEFAULT_TOTAL_SESSIONS must be at least 1")
    if DEFAULT_MAX_ABSENT_ALLOWED < 0:
        problems.append("DEFAULT_MAX_ABSENT_ALLOWED cannot be negative")

    return problems


def validate_config():
    """Вызывается при старте приложения; без секрета JWT сервис не запускается"""
    problems = config_problems()
    if problems:
        raise ConfigurationError("environment", "; ".join(problems))


# Ранний сигнал при импорте, сам запуск останавливает lifespan
if os.getenv("VALIDATE_CONFIG_ON_IMPORT", "true").lower() == "true":
    for problem in config_problems():
        logger.warning(f"Configuration problem: {problem}")
