import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.exc import IntegrityError, OperationalError

from app.core.error_handlers import setup_exception_handlers, translate_database_error
from app.core.exceptions import (
    DatabaseConnectionError,
    DatabaseIntegrityError,
    NotFoundError,
    ValidationError,
)


def _integrity_error(message):
    return IntegrityError("INSERT ...", {}, Exception(message))


def test_duplicate_attendance_log_gets_readable_message():
    exc = translate_database_error(
        _integrity_error(
            "UNIQUE constraint failed: uq_attendance_log_session_student"
        )
    )

    assert isinstance(exc, DatabaseIntegrityError)
    assert exc.status_code == 409
    assert exc.details["constraint"] == "uq_attendance_log_session_student"
    assert "already recorded" in exc.message


def test_unknown_constraint_name_parsed_from_postgres_text():
    exc = translate_database_error(
        _integrity_error('duplicate key value violates unique constraint "rooms_name_key"')
    )

    assert exc.details["constraint"] == "rooms_name_key"
    assert exc.message == "Database constraint violated: rooms_name_key"


def test_lost_connection_maps_to_503():
    exc = translate_database_error(OperationalError("SELECT 1", {}, Exception("gone")))

    assert isinstance(exc, DatabaseConnectionError)
    assert exc.status_code == 503


@pytest_asyncio.fixture
async def client():
    app = FastAPI()
    setup_exception_handlers(app)

    @app.get("/missing")
    async def missing():
        raise NotFoundError("TeachingClass", "77")

    @app.get("/invalid")
    async def invalid():
        raise ValidationError("course_start_date is after course_end_date")

    @app.get("/duplicate")
    async def duplicate():
        raise _integrity_error("uq_student_score_class_student")

    @app.get("/typed/{number}")
    async def typed(number: int):
        return {"number": number}

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://testserver"
    ) as client:
        yield client


async def test_app_exception_body(client):
    response = await client.get("/missing")

    assert response.status_code == 404
    assert response.json() == {
        "error": "NOT_FOUND",
        "message": "TeachingClass '77' not found",
        "details": {"resource": "TeachingClass", "identifier": "77"},
        "path": "/missing",
    }


async def test_validation_error_is_400(client):
    response = await client.get("/invalid")

    assert response.status_code == 400
    assert response.json()["error"] == "VALIDATION_ERROR"


async def test_integrity_error_is_409(client):
    response = await client.get("/duplicate")

    assert response.status_code == 409
    body = response.json()
    assert body["error"] == "DATABASE_INTEGRITY_ERROR"
    assert body["details"]["constraint"] == "uq_student_score_class_student"


async def test_request_validation_lists_fields(client):
    response = await client.get("/typed/abc")

    assert response.status_code == 422
    fields = response.json()["details"]["fields"]
    assert fields[0]["field"] == "path -> number"
