"""
Обработчики исключений FastAPI.

Все ответы об ошибках имеют один формат:
{"error": <код>, "message": <текст>, "details": {...}, "path": <путь запроса>}
"""

import json
import logging
import re
import traceback
from typing import Union

from asyncpg.exceptions import (
    ConnectionDoesNotExistError,
    ConnectionFailureError,
    PostgresError,
    TooManyConnectionsError,
)
from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import (
    DisconnectionError,
    IntegrityError,
    OperationalError,
    SQLAlchemyError,
    TimeoutError,
)

from app.core.config import DEBUG
from app.core.exceptions import (
    BaseAppException,
    DatabaseConnectionError,
    DatabaseError,
    DatabaseIntegrityError,
    DatabaseTimeoutError,
)

logger = logging.getLogger(__name__)

# Понятные сообщения для уникальных ограничений модели
CONSTRAINT_MESSAGES = {
    "uq_attendance_log_session_student": "Attendance for this student and session is already recorded",
    "uq_student_score_class_student": "Score for this student and class already exists",
}


def _request_context(request: Request) -> dict:
    return {"path": request.url.path, "method": request.method}


def _json_response(request: Request, status_code: int, body: dict, headers=None):
    return JSONResponse(
        status_code=status_code,
        content={**body, "path": request.url.path},
        headers=headers,
    )


def _constraint_name(exc: IntegrityError) -> str:
    name = getattr(exc.orig, "constraint_name", None)
    if name:
        return name

    text = str(exc.orig)
    for known in CONSTRAINT_MESSAGES:
        if known in text:
            return known

    match = re.search(r'constraint "([^"]+)"', text)
    return match.group(1) if match else "unknown"


def translate_database_error(exc: Exception) -> BaseAppException:
    """Ошибка драйвера/ORM -> исключение приложения с HTTP-статусом"""
    if isinstance(exc, IntegrityError):
        constraint = _constraint_name(exc)
        app_exc = DatabaseIntegrityError(constraint)
        if constraint in CONSTRAINT_MESSAGES:
            app_exc.message = CONSTRAINT_MESSAGES[constraint]
        return app_exc

    if isinstance(
        exc,
        (
            OperationalError,
            DisconnectionError,
            ConnectionFailureError,
            ConnectionDoesNotExistError,
        ),
    ):
        return DatabaseConnectionError("Database connection lost")

    if isinstance(exc, TooManyConnectionsError):
        return DatabaseConnectionError("Too many database connections")

    if isinstance(exc, TimeoutError):
        return DatabaseTimeoutError("database_operation", 30)

    details = {}
    if isinstance(exc, PostgresError):
        details["postgres_code"] = getattr(exc, "sqlstate", None)
    return DatabaseError(f"Database operation failed: {type(exc).__name__}", details)


async def app_exception_handler(
    request: Request, exc: BaseAppException
) -> JSONResponse:
    """Исключения приложения: 4xx как предупреждение, 5xx как ошибка"""
    logger.log(
        logging.WARNING if exc.status_code < 500 else logging.ERROR,
        f"{exc.error_code}: {exc.message}",
        extra={
            "error_code": exc.error_code,
            "status_code": exc.status_code,
            "details": exc.details,
            **_request_context(request),
        },
    )
    return _json_response(request, exc.status_code, exc.to_dict())


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    logger.warning(
        f"HTTP {exc.status_code}: {exc.detail}",
        extra={"status_code": exc.status_code, **_request_context(request)},
    )
    return _json_response(
        request,
        exc.status_code,
        {"error": "HTTP_ERROR", "message": exc.detail, "details": {}},
        headers=getattr(exc, "headers", None),
    )


def _jsonable(value):
    try:
        json.dumps(value)
        return value
    except (TypeError, ValueError):
        return str(value)


async def validation_exception_handler(
    request: Request, exc: Union[RequestValidationError, PydanticValidationError]
) -> JSONResponse:
    """Ошибки схем запроса (типы, диапазоны полей) - 422 со списком полей"""
    fields = [
        {
            "field": " -> ".join(str(loc) for loc in error.get("loc", [])),
            "message": error.get("msg", "Validation error"),
            "type": error.get("type", "value_error"),
            "input": _jsonable(error.get("input")),
        }
        for error in exc.errors()
    ]

    logger.warning(
        f"Request validation failed for {len(fields)} field(s)",
        extra={"errors": fields, **_request_context(request)},
    )
    return _json_response(
        request,
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        {
            "error": "VALIDATION_ERROR",
            "message": f"Validation failed for {len(fields)} field(s)",
            "details": {"fields": fields},
        },
    )


async def database_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """SQLAlchemy и asyncpg ошибки, не перехваченные в CRUD"""
    logger.error(
        f"Database exception {type(exc).__name__}: {exc}",
        extra={
            "exception_type": type(exc).__name__,
            "traceback": traceback.format_exc(),
            **_request_context(request),
        },
    )
    return await app_exception_handler(request, translate_database_error(exc))


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        f"Unhandled exception {type(exc).__name__}: {exc}",
        extra={
            "exception_type": type(exc).__name__,
            "traceback": traceback.format_exc(),
            **_request_context(request),
        },
    )

    # Детали только в режиме отладки
    details = {}
    if DEBUG:
        details = {
            "exception_type": type(exc).__name__,
            "traceback": traceback.format_exc(),
        }

    return _json_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        {
            "error": "INTERNAL_SERVER_ERROR",
            "message": "An unexpected error occurred",
            "details": details,
        },
    )


def setup_exception_handlers(app):
    app.add_exception_handler(BaseAppException, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(PydanticValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, database_exception_handler)
    app.add_exception_handler(PostgresError, database_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    logger.debug("Exception handlers registered")
