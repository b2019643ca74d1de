"""
Создание схемы БД при старте и служебные команды:

    python -m app.core.init_db [init|verify|reset]
"""

import asyncio
import logging
import sys

from sqlalchemy import inspect

import app.classes.models  # noqa: F401  (регистрирует таблицы в Base.metadata)
from app.core.config import ENVIRONMENT
from app.core.database import Base, db_manager, engine
from app.core.exceptions import ConfigurationError, DatabaseError

logger = logging.getLogger(__name__)

RESETTABLE_ENVIRONMENTS = ("development", "dev", "local", "test")


async def init_database():
    latency_ms = await db_manager.check_connection()
    logger.info(f"Database reachable ({latency_ms:.1f}ms), creating missing tables")
    try:
        await db_manager.create_tables()
    except DatabaseError:
        raise
    except Exception as e:
        raise DatabaseError(
            "Could not create database schema", {"reason": f"{type(e).__name__}: {e}"}
        ) from e


async def missing_tables() -> list:
    async with engine.connect() as conn:
        present = await conn.run_sync(
            lambda sync_conn: set(inspect(sync_conn).get_table_names())
        )
    return sorted(name for name in Base.metadata.tables if name not in present)


async def verify_database():
    missing = await missing_tables()
    if missing:
        raise DatabaseError("Schema is incomplete", {"missing_tables": missing})
    logger.info(f"Schema complete: {len(Base.metadata.tables)} tables")


async def reset_database():
    """Удаляет и пересоздает все таблицы. Только для dev/test окружений"""
    if ENVIRONMENT not in RESETTABLE_ENVIRONMENTS:
        raise ConfigurationError(
            "ENVIRONMENT", f"Refusing to reset database in '{ENVIRONMENT}' environment"
        )

    logger.warning("Dropping all tables")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await init_database()


COMMANDS = {
    "init": init_database,
    "verify": verify_database,
    "reset": reset_database,
}


async def run_command(name: str):
    try:
        await COMMANDS[name]()
    finally:
        await db_manager.close_connections()


def main(argv=None) -> int:
    args = sys.argv[1:] if argv is None else argv
    name = args[0] if args else "init"
    if name not in COMMANDS:
        logger.error(f"Unknown command '{name}', expected one of: {', '.join(COMMANDS)}")
        return 2

    try:
        asyncio.run(run_command(name))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130
    except Exception as e:
        logger.error(f"Command '{name}' failed: {e}")
        return 1
    return 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    sys.exit(main())
