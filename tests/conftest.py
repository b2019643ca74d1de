import os

# Настройки до импорта приложения: config читает окружение при импорте
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "attendance-test-secret-key-0123456789")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("VALIDATE_CONFIG_ON_IMPORT", "false")

from datetime import date, datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.database import Base
from app.core.permissions import Actor, ActorRole
from app.classes.models import (
    AttendanceSession,
    MainClass,
    Room,
    Semester,
    SessionStatus,
    Subject,
    TeachingClass,
    User,
    UserRole,
    UserStatus,
)


@pytest_asyncio.fixture
async def engine():
    """
    Fresh in-memory SQLite database for each test.
    pysqlite-family drivers need BEGIN emitted manually for SAVEPOINT to work.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


# ===== Factories =====


@pytest.fixture
def make_user(session):
    counter = {"n": 0}

    async def _make_user(role=UserRole.student, status=UserStatus.active, **kwargs):
        counter["n"] += 1
        user = User(
            full_name=kwargs.pop("full_name", f"{role.value.title()} {counter['n']}"),
            email=kwargs.pop("email", f"{role.value}{counter['n']}@uni.test"),
            role=role.value,
            status=status.value,
            **kwargs,
        )
        session.add(user)
        await session.commit()
        return user

    return _make_user


@pytest_asyncio.fixture
async def teacher(make_user):
    return await make_user(UserRole.teacher)


@pytest_asyncio.fixture
async def other_teacher(make_user):
    return await make_user(UserRole.teacher)


@pytest_asyncio.fixture
async def students(make_user):
    return [await make_user(UserRole.student) for _ in range(3)]


@pytest.fixture
def admin_actor():
    return Actor(id=999, role=ActorRole.admin)


@pytest.fixture
def teacher_actor(teacher):
    return Actor(id=teacher.id, role=ActorRole.teacher)


@pytest_asyncio.fixture
async def semester(session):
    semester = Semester(
        name="Spring 2024",
        academic_year="2023-2024",
        start_date=date(2024, 1, 1),
        end_date=date(2024, 5, 31),
    )
    session.add(semester)
    await session.commit()
    return semester


@pytest_asyncio.fixture
async def rooms(session):
    rooms = [
        Room(room_number="A101", building="A", capacity=40),
        Room(room_number="B202", building="B", capacity=60),
    ]
    session.add_all(rooms)
    await session.commit()
    return rooms


@pytest_asyncio.fixture
async def subject(session):
    subject = Subject(name="Databases", code="CS301", credits=3)
    session.add(subject)
    await session.commit()
    return subject


@pytest.fixture
def make_class(session, semester, teacher, rooms):
    """TeachingClass напрямую в БД, без генерации занятий"""

    async def _make_class(**kwargs):
        values = {
            "class_name": "Databases 01",
            "class_code": "CS301-01",
            "teacher_id": teacher.id,
            "semester_id": semester.id,
            "total_sessions": 15,
            "max_absent_allowed": 3,
            "schedule": [
                {
                    "day_of_week": 1,
                    "is_recurring": True,
                    "specific_dates": [],
                    "start_time": "08:00",
                    "end_time": "10:00",
                    "room_id": rooms[0].id,
                    "excluded_dates": [],
                }
            ],
            "students": [],
            "course_start_date": date(2024, 1, 1),
            "course_end_date": date(2024, 1, 31),
            "auto_generate_sessions": True,
        }
        values.update(kwargs)
        teaching_class = TeachingClass(**values)
        session.add(teaching_class)
        await session.commit()
        return teaching_class

    return _make_class


@pytest.fixture
def make_session(session):
    """AttendanceSession с нужным статусом и списками"""

    async def _make_session(teaching_class, number, status=SessionStatus.completed, **kwargs):
        day = kwargs.pop("date", date(2024, 1, 1) + timedelta(days=7 * (number - 1)))
        attendance_session = AttendanceSession(
            teaching_class_id=teaching_class.id,
            session_number=number,
            date=day,
            room_id=kwargs.pop("room_id", None),
            start_time=datetime.combine(day, datetime.min.time()).replace(hour=8),
            end_time=datetime.combine(day, datetime.min.time()).replace(hour=10),
            status=status.value,
            students_present=kwargs.pop("students_present", []),
            students_absent=kwargs.pop(
                "students_absent", list(teaching_class.students or [])
            ),
        )
        session.add(attendance_session)
        await session.commit()
        return attendance_session

    return _make_session


@pytest_asyncio.fixture
async def main_class(session, teacher):
    main_class = MainClass(
        name="CS 2021 A",
        class_code="CS21A",
        advisor_id=teacher.id,
        students=[],
        pending_students=[],
    )
    session.add(main_class)
    await session.commit()
    return main_class
