"""
Иерархия исключений приложения.

Каждое исключение несет HTTP-статус и машинный код ошибки; error_handlers
превращает их в JSON вида {"error", "message", "details", "path"}.
Вторичные сбои (пересчет баллов, шаги каскадного удаления, уведомления)
исключениями наружу не выходят, см. logging_utils.log_suppressed_failure.
"""

from typing import Any, Dict, Optional


class BaseAppException(Exception):
    """Базовое исключение приложения"""

    status_code = 500
    error_code = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


# === Доступ ===
class AuthenticationError(BaseAppException):
    """Нет токена, токен просрочен или подписан не тем ключом"""

    status_code = 401
    error_code = "AUTHENTICATION_ERROR"

    def __init__(
        self,
        message: str = "Authentication failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details=details)


class AuthorizationError(BaseAppException):
    """Роль пользователя не допускает действие"""

    status_code = 403
    error_code = "AUTHORIZATION_ERROR"

    def __init__(
        self, message: str = "Access denied", details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details=details)


class PermissionDeniedError(BaseAppException):
    """Роль подходит, но пользователь не владеет ресурсом (чужой класс, не куратор)"""

    status_code = 403
    error_code = "PERMISSION_DENIED"

    def __init__(self, action: str, resource: str, reason: Optional[str] = None):
        message = f"Permission denied: cannot {action} {resource}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(
            message, details={"action": action, "resource": resource, "reason": reason}
        )


# === Входные данные и ресурсы ===
class ValidationError(BaseAppException):
    """
    Некорректный ввод: id, даты курса вне семестра, неполная запись расписания.
    Бросается и из pydantic-валидаторов схем: такие ошибки pydantic не
    оборачивает, и они доходят до обработчика как 400.
    """

    status_code = 400
    error_code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details=details)


class NotFoundError(BaseAppException):
    status_code = 404
    error_code = "NOT_FOUND"

    def __init__(self, resource: str, identifier: Optional[str] = None):
        details = {"resource": resource}
        if identifier:
            details["identifier"] = identifier
            message = f"{resource} '{identifier}' not found"
        else:
            message = f"{resource} not found"
        super().__init__(message, details=details)


class StudentNotInClassError(BaseAppException):
    """Студента нет в составе учебного класса"""

    status_code = 404
    error_code = "STUDENT_NOT_IN_CLASS"

    def __init__(self, class_id: int, student_id: int):
        super().__init__(
            f"Student {student_id} is not enrolled in teaching class {class_id}",
            details={"class_id": class_id, "student_id": student_id},
        )


class BusinessLogicError(BaseAppException):
    """Запрос корректен, но нарушает правило: повторная запись, нет расписания"""

    status_code = 400
    error_code = "BUSINESS_LOGIC_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details=details)


# === База данных ===
class DatabaseError(BaseAppException):
    error_code = "DATABASE_ERROR"

    def __init__(
        self,
        message: str = "Database operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details=details)


class DatabaseConnectionError(DatabaseError):
    status_code = 503
    error_code = "DATABASE_CONNECTION_ERROR"

    def __init__(self, message: str = "Database connection failed"):
        super().__init__(message)


class DatabaseTimeoutError(DatabaseError):
    status_code = 504
    error_code = "DATABASE_TIMEOUT"

    def __init__(self, operation: str, timeout: int):
        super().__init__(
            f"Database operation '{operation}' timed out after {timeout}s",
            {"operation": operation, "timeout": timeout},
        )


class DatabaseIntegrityError(DatabaseError):
    """Нарушено ограничение БД (например, вторая отметка студента на занятии)"""

    status_code = 409
    error_code = "DATABASE_INTEGRITY_ERROR"

    def __init__(self, constraint: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            f"Database constraint violated: {constraint}",
            {"constraint": constraint, **(details or {})},
        )


class ConfigurationError(BaseAppException):
    error_code = "CONFIGURATION_ERROR"

    def __init__(self, parameter: str, message: Optional[str] = None):
        super().__init__(
            message or f"Configuration parameter '{parameter}' is invalid or missing",
            details={"parameter": parameter},
        )
