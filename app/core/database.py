"""
Подключение к БД и транзакционные помощники для CRUD.

Запрос работает в одной AsyncSession. with_db_transaction фиксирует или
откатывает операцию целиком; вторичные шаги (пересчет баллов, уборка при
удалении, уведомления) открывают внутри нее свои SAVEPOINT.
"""

import asyncio
import logging
import time
from functools import wraps
from typing import Any, AsyncGenerator, Callable, Dict, TypeVar

from asyncpg.exceptions import ConnectionDoesNotExistError, ConnectionFailureError
from sqlalchemy.exc import (
    DisconnectionError,
    OperationalError,
    SQLAlchemyError,
    TimeoutError,
)
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import text

from .config import (
    DATABASE_URL,
    DB_RETRY_ATTEMPTS,
    DB_RETRY_BACKOFF_FACTOR,
    DB_RETRY_DELAY,
)
from .exceptions import BaseAppException, DatabaseConnectionError, DatabaseTimeoutError

logger = logging.getLogger(__name__)

POOL_TIMEOUT_SECONDS = 30


def _engine_options(url: str) -> Dict[str, Any]:
    options = {"echo": False, "pool_pre_ping": True}
    # У SQLite (тесты, локальный запуск) нет настраиваемого пула соединений
    if not url.startswith("sqlite"):
        options.update(
            pool_size=20,
            max_overflow=10,
            pool_timeout=POOL_TIMEOUT_SECONDS,
            pool_recycle=3600,
        )
    return options


engine = create_async_engine(DATABASE_URL, **_engine_options(DATABASE_URL))

async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

Base = declarative_base()

F = TypeVar("F", bound=Callable[..., Any])

# Временные ошибки соединения, после которых операцию можно повторить
TRANSIENT_DB_ERRORS = (
    OperationalError,
    DisconnectionError,
    TimeoutError,
    ConnectionFailureError,
    ConnectionDoesNotExistError,
)


def _to_app_error(exc: Exception, operation: str) -> Exception:
    if isinstance(
        exc, (ConnectionFailureError, ConnectionDoesNotExistError, DisconnectionError)
    ):
        return DatabaseConnectionError(
            f"Lost database connection during {operation}"
        )
    if isinstance(exc, TimeoutError):
        return DatabaseTimeoutError(operation, POOL_TIMEOUT_SECONDS)
    return exc


def db_retry(
    max_attempts: int = None,
    delay: float = None,
    backoff_factor: float = None,
    exceptions: tuple = None,
) -> Callable[[F], F]:
    """
    Повтор async-операции при временных ошибках БД.

    Args:
        max_attempts: Сколько раз пробовать (DB_RETRY_ATTEMPTS)
        delay: Пауза перед второй попыткой, сек (DB_RETRY_DELAY)
        backoff_factor: Во сколько раз растет пауза (DB_RETRY_BACKOFF_FACTOR)
        exceptions: Какие исключения считать временными
    """
    attempts = max_attempts if max_attempts is not None else DB_RETRY_ATTEMPTS
    first_delay = delay if delay is not None else DB_RETRY_DELAY
    factor = backoff_factor if backoff_factor is not None else DB_RETRY_BACKOFF_FACTOR
    retry_on = exceptions or TRANSIENT_DB_ERRORS

    def decorator(func: F) -> F:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            pause = first_delay

            for attempt in range(1, attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except retry_on as e:
                    if attempt == attempts:
                        logger.error(
                            f"{func.__name__} gave up after {attempts} attempts: {e}",
                            extra={
                                "operation": func.__name__,
                                "attempts": attempts,
                                "exception_type": type(e).__name__,
                            },
                        )
                        app_error = _to_app_error(e, func.__name__)
                        if app_error is e:
                            raise
                        raise app_error from e

                    logger.warning(
                        f"{func.__name__} failed (attempt {attempt}/{attempts}), "
                        f"retrying in {pause:.1f}s: {e}",
                        extra={
                            "operation": func.__name__,
                            "attempt": attempt,
                            "exception_type": type(e).__name__,
                        },
                    )
                    await asyncio.sleep(pause)
                    pause *= factor

        return wrapper

    return decorator


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Dependency: одна сессия на HTTP-запрос"""
    async with async_session() as session:
        try:
            yield session
        except Exception:
            if session.in_transaction():
                await session.rollback()
            raise


class DatabaseManager:
    """Служебные операции со схемой и пулом соединений"""

    @staticmethod
    @db_retry()
    async def create_tables():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info(f"Database schema ready: {len(Base.metadata.tables)} tables")

    @staticmethod
    @db_retry()
    async def check_connection() -> float:
        """Returns round-trip time of SELECT 1 in milliseconds"""
        started = time.perf_counter()
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except TRANSIENT_DB_ERRORS:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Database connection check failed: {e}")
            raise DatabaseConnectionError("Database connection check failed")

        latency_ms = (time.perf_counter() - started) * 1000
        logger.debug(f"Database responded in {latency_ms:.1f}ms")
        return latency_ms

    @staticmethod
    async def close_connections():
        try:
            await engine.dispose()
            logger.info("Database connection pool disposed")
        except Exception as e:
            logger.error(f"Error disposing database connection pool: {e}")


db_manager = DatabaseManager()


@db_retry()
async def with_db_transaction(
    session: AsyncSession, operation: Callable, *args, **kwargs
):
    """
    Выполняет operation(session, *args, **kwargs) как одну транзакцию:
    commit при успехе, rollback и проброс исключения при любой ошибке.
    """
    operation_name = getattr(operation, "__name__", "operation")
    try:
        result = await operation(session, *args, **kwargs)
        await session.commit()
        return result
    except Exception as e:
        await session.rollback()
        # Отказ по бизнес-правилу - не сбой базы
        expected = isinstance(e, BaseAppException) and e.status_code < 500
        logger.log(
            logging.INFO if expected else logging.ERROR,
            f"Transaction {operation_name} rolled back: {e}",
            extra={"operation": operation_name, "exception_type": type(e).__name__},
        )
        raise


def db_operation(func: F) -> F:
    """Логирует длительность CRUD-операции и ошибки SQLAlchemy"""

    @wraps(func)
    async def wrapper(*args, **kwargs):
        started = time.perf_counter()
        try:
            result = await func(*args, **kwargs)
        except SQLAlchemyError as e:
            logger.error(
                f"SQLAlchemy error in {func.__name__}: {e}",
                extra={"operation": func.__name__, "exception_type": type(e).__name__},
            )
            raise

        logger.debug(
            f"{func.__name__} completed in {(time.perf_counter() - started) * 1000:.1f}ms"
        )
        return result

    return wrapper
