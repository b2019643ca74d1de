from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded

from app.classes.routers import attendance, main_classes, teaching_classes
from app.core import config
from app.core.database import db_manager
from app.core.error_handlers import setup_exception_handlers
from app.core.init_db import init_database
from app.core.limits import limiter, rate_limit_handler
from app.core.logging_utils import error_tracker, get_logger, setup_logging
from app.core.middleware import setup_middleware

setup_logging(config.LOG_LEVEL, config.LOG_FORMAT)
logger = get_logger(__name__)

API_PREFIX = "/api/v1"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        f"{config.APP_NAME} {config.APP_VERSION} starting",
        extra={"environment": config.ENVIRONMENT},
    )
    try:
        config.validate_config()
        await init_database()
    except Exception as e:
        error_tracker.track_error(
            "STARTUP_ERROR", str(e), {"environment": config.ENVIRONMENT}
        )
        logger.critical(f"Startup aborted: {e}")
        raise

    yield

    await db_manager.close_connections()
    logger.info(f"{config.APP_NAME} stopped")


app = FastAPI(
    title=config.APP_NAME,
    version=config.APP_VERSION,
    description="Расписание учебных классов, занятия, посещаемость и баллы за посещаемость",
    debug=config.DEBUG,
    lifespan=lifespan,
)

setup_exception_handlers(app)
setup_middleware(app, slow_request_threshold=config.SLOW_REQUEST_THRESHOLD)

# CORS добавляется последним, чтобы preflight не проходил через логирование
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_handler)

for module in (teaching_classes, attendance, main_classes):
    app.include_router(module.router, prefix=API_PREFIX)


@app.get("/health", tags=["System"])
async def health():
    """Состояние сервиса: доступность БД и число учтенных ошибок"""
    try:
        latency_ms = await db_manager.check_connection()
    except Exception as e:
        logger.warning(f"Health check: database unreachable ({type(e).__name__})")
        database = {"status": "unavailable"}
    else:
        database = {"status": "ok", "latency_ms": round(latency_ms, 1)}

    return {
        "status": "ok" if database["status"] == "ok" else "degraded",
        "version": config.APP_VERSION,
        "database": database,
        "tracked_errors": error_tracker.get_stats()["total_errors"],
    }
