import logging
from typing import Optional, Tuple

from sqlalchemy import and_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.core import clock
from app.core.exceptions import NotFoundError, StudentNotInClassError, ValidationError
from app.core.permissions import Actor, ensure_can_manage
from app.core.validations import validate_id
from app.classes.models.attendance import (
    AttendanceLog,
    AttendanceSession,
    AttendanceStatus,
    PRESENT_LIST_STATUSES,
)
from app.classes.models.scores import StudentScore
from app.classes.models.teaching_classes import TeachingClass
from app.classes.services.score_aggregator import recompute_all_safely

logger = logging.getLogger(__name__)


def move_student(
    attendance_session: AttendanceSession, student_id: int, status: AttendanceStatus
) -> None:
    """Переносит студента в students_present или students_absent (но не в оба)"""
    present = [s for s in attendance_session.students_present or [] if s != student_id]
    absent = [s for s in attendance_session.students_absent or [] if s != student_id]

    if status in PRESENT_LIST_STATUSES:
        present.append(student_id)
    else:
        absent.append(student_id)

    # Новые списки, чтобы изменение JSON-колонки было замечено
    attendance_session.students_present = present
    attendance_session.students_absent = absent


async def record_attendance(
    session: AsyncSession,
    class_id: int,
    session_id: int,
    student_id: int,
    status,
    actor: Actor,
    note: Optional[str] = None,
) -> Tuple[AttendanceLog, Optional[StudentScore]]:
    """
    Записывает статус студента на занятии.

    Отметка (AttendanceLog) - основной результат. Пересчет баллов всего класса
    выполняется в отдельном SAVEPOINT; его ошибка не откатывает отметку.

    Returns:
        Tuple[log, updated_score or None if recompute failed]
    """
    validate_id(class_id, "Class ID")
    validate_id(session_id, "Session ID")
    validate_id(student_id, "Student ID")

    try:
        status = AttendanceStatus(status)
    except ValueError:
        raise ValidationError(
            f"Invalid attendance status '{status}'",
            {"allowed": [s.value for s in AttendanceStatus]},
        )

    class_result = await session.execute(
        select(TeachingClass).where(TeachingClass.id == class_id)
    )
    teaching_class = class_result.scalar_one_or_none()
    if not teaching_class:
        raise NotFoundError("Teaching class", str(class_id))

    ensure_can_manage(actor, teaching_class, "record attendance for")

    if not teaching_class.has_student(student_id):
        raise StudentNotInClassError(class_id, student_id)

    # Блокируем строку занятия на время read-modify-write списков
    session_result = await session.execute(
        select(AttendanceSession)
        .where(
            and_(
                AttendanceSession.id == session_id,
                AttendanceSession.teaching_class_id == class_id,
            )
        )
        .with_for_update()
    )
    attendance_session = session_result.scalar_one_or_none()
    if not attendance_session:
        raise NotFoundError("Attendance session", str(session_id))

    log_result = await session.execute(
        select(AttendanceLog).where(
            and_(
                AttendanceLog.session_id == session_id,
                AttendanceLog.student_id == student_id,
            )
        )
    )
    log = log_result.scalar_one_or_none()
    if log is None:
        log = AttendanceLog(session_id=session_id, student_id=student_id)
        session.add(log)

    log.status = status.value
    if note is not None:
        log.note = note
    log.timestamp = clock.now()

    move_student(attendance_session, student_id, status)
    await session.flush()

    outcomes = await recompute_all_safely(
        session,
        class_id,
        "record_attendance",
        {"session_id": session_id, "student_id": student_id},
    )

    score = None
    if outcomes is None:
        await session.refresh(log)
    else:
        for outcome in outcomes:
            if outcome.student_id == student_id:
                score = outcome.score
                break

    return log, score
