"""
HTTP middleware: request_id, журнал запросов с замером времени, учет 5xx
и заголовки безопасности.
"""

import logging
import time
import uuid
from typing import Callable, Iterable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from app.core.logging_utils import error_tracker

logger = logging.getLogger(__name__)

# Служебные пути не логируем
QUIET_PATHS = frozenset({"/health", "/docs", "/redoc", "/openapi.json"})

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}


def client_address(request: Request) -> str:
    # За nginx реальный адрес лежит в заголовках
    for header in ("x-forwarded-for", "x-real-ip"):
        value = request.headers.get(header)
        if value:
            return value.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Присваивает запросу request_id (из X-Request-ID или новый), пишет строку
    журнала на каждый запрос и предупреждение о медленных. Ответы 5xx и
    необработанные исключения попадают в error_tracker.
    """

    def __init__(
        self,
        app: ASGIApp,
        slow_request_threshold: float = 2.0,
        quiet_paths: Optional[Iterable[str]] = None,
    ):
        super().__init__(app)
        self.slow_ms = slow_request_threshold * 1000
        self.quiet_paths = frozenset(quiet_paths) if quiet_paths else QUIET_PATHS

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:12]
        request.state.request_id = request_id

        path = request.url.path
        quiet = path in self.quiet_paths
        context = {
            "request_id": request_id,
            "method": request.method,
            "path": path,
            "client_ip": client_address(request),
        }
        started = time.monotonic()

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = round((time.monotonic() - started) * 1000, 2)
            logger.error(
                f"{request.method} {path} raised {type(e).__name__}",
                extra={**context, "duration_ms": duration_ms},
            )
            error_tracker.track_error(f"UNHANDLED_{type(e).__name__}", str(e), context)
            raise

        duration_ms = round((time.monotonic() - started) * 1000, 2)

        if response.status_code >= 500:
            error_tracker.track_error(
                f"HTTP_{response.status_code}",
                f"{request.method} {path} answered {response.status_code}",
                context,
            )

        if not quiet:
            logger.info(
                f"{request.method} {path} {response.status_code} {duration_ms}ms",
                extra={**context, "status_code": response.status_code, "duration_ms": duration_ms},
            )
            if duration_ms > self.slow_ms:
                logger.warning(
                    f"Slow request: {request.method} {path} took {duration_ms}ms",
                    extra={**context, "duration_ms": duration_ms, "category": "performance"},
                )

        response.headers["X-Request-ID"] = request_id
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        # Журналы посещаемости не кэшируются промежуточными прокси
        if request.url.path.startswith("/api/"):
            response.headers["Cache-Control"] = "no-store"
        return response


def setup_middleware(app, slow_request_threshold: float = 2.0, quiet_paths=None):
    # add_middleware оборачивает снаружи: RequestContext выполняется первым
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        RequestContextMiddleware,
        slow_request_threshold=slow_request_threshold,
        quiet_paths=quiet_paths,
    )
    logger.debug("Middleware registered")
