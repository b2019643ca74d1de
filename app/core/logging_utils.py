"""
Логирование: настройка handler-ов, JSON-формат, бизнес-события и учет
подавленных вторичных ошибок.
"""

import json
import logging
from collections import Counter, deque
from datetime import datetime, timezone
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

# Атрибуты LogRecord, которые не выводим как extra-поля
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "asctime", "taskName"}

# Шумные библиотечные логгеры
_QUIET_LOGGERS = ("sqlalchemy.engine", "uvicorn.access", "aiosqlite")


class JsonFormatter(logging.Formatter):
    """Одна JSON-строка на запись; поля из extra= попадают на верхний уровень"""

    def format(self, record):
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }

        for key, value in vars(record).items():
            if key in _RECORD_ATTRS or key.startswith("_"):
                continue
            try:
                json.dumps(value)
            except (TypeError, ValueError):
                value = str(value)
            entry[key] = value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False)


def setup_logging(log_level: str = "INFO", log_format: str = "text"):
    """
    Один console handler на корневом логгере.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR
        log_format: text или json
    """
    if log_format.lower() == "json":
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"
        )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(log_level.upper())

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.info(f"Logging configured: level={log_level}, format={log_format}")


class ErrorTracker:
    """
    Счетчики ошибок по типам и короткая история последних случаев.
    Сюда попадают сбои, которые не доходят до пользователя: пересчет баллов,
    шаги каскадного удаления, генерация занятий, уведомления, ответы 5xx.
    """

    def __init__(self, max_history: int = 100):
        self.error_counts = Counter()
        self.last_errors = deque(maxlen=max_history)

    def track_error(
        self, error_type: str, error_message: str, context: Dict[str, Any] = None
    ):
        self.error_counts[error_type] += 1
        self.last_errors.append(
            {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "type": error_type,
                "message": error_message,
                "context": context or {},
            }
        )
        logger.warning(
            f"Error tracked: {error_type} (total {self.error_counts[error_type]})",
            extra={"error_type": error_type, "context": context or {}},
        )

    def get_stats(self) -> Dict[str, Any]:
        return {
            "error_counts": dict(self.error_counts),
            "total_errors": sum(self.error_counts.values()),
            "unique_error_types": len(self.error_counts),
            "last_errors": list(self.last_errors)[-10:],
        }

    def reset_stats(self):
        self.error_counts.clear()
        self.last_errors.clear()


error_tracker = ErrorTracker()


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def log_business_event(
    event: str,
    entity_type: str,
    entity_id: int,
    details: Optional[Dict[str, Any]] = None,
):
    """
    Аудит доменного события: teaching_class_created, attendance_recorded,
    scores_recomputed, student_approved и т.д.
    """
    logger.info(
        f"Business event: {event} {entity_type}#{entity_id}",
        extra={
            "event": event,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "details": details or {},
            "category": "business_event",
        },
    )


def log_suppressed_failure(
    error_type: str,
    operation: str,
    exc: Exception,
    context: Optional[Dict[str, Any]] = None,
):
    """
    Вторичная ошибка, которая не прерывает основной запрос.
    Пишется с контекстом (class_id, student_id, operation) и учитывается в error_tracker.
    """
    context = {"operation": operation, **(context or {})}
    logger.error(
        f"{error_type} during {operation}: {exc}",
        extra={
            "error_type": error_type,
            "exception_type": type(exc).__name__,
            "context": context,
        },
        exc_info=exc,
    )
    error_tracker.track_error(error_type, str(exc), context)
