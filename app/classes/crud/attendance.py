from typing import List, Optional, Tuple

from sqlalchemy import and_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.core.database import db_operation, with_db_transaction
from app.core.exceptions import NotFoundError, PermissionDeniedError, StudentNotInClassError
from app.core.logging_utils import log_business_event
from app.core.permissions import Actor, can_manage, ensure_can_manage, is_enrolled
from app.core.validations import validate_id
from app.classes.crud.teaching_classes import ensure_can_view, get_teaching_class_by_id
from app.classes.models.attendance import (
    AttendanceLog,
    AttendanceSession,
    AttendanceStatus,
    SessionStatus,
)
from app.classes.models.scores import StudentScore
from app.classes.schemas.attendance import AttendanceMark
from app.classes.services.attendance_recorder import move_student, record_attendance
from app.classes.services.score_aggregator import recompute_all_safely


@db_operation
async def get_session_by_id(
    session: AsyncSession, session_id: int
) -> AttendanceSession:
    """Get attendance session by ID"""
    validate_id(session_id, "Session ID")

    result = await session.execute(
        select(AttendanceSession).where(AttendanceSession.id == session_id)
    )
    attendance_session = result.scalar_one_or_none()

    if not attendance_session:
        raise NotFoundError("Attendance session", str(session_id))

    return attendance_session


async def get_session(
    session: AsyncSession, session_id: int, actor: Actor
) -> AttendanceSession:
    attendance_session = await get_session_by_id(session, session_id)
    teaching_class = await get_teaching_class_by_id(
        session, attendance_session.teaching_class_id
    )
    ensure_can_view(actor, teaching_class)
    return attendance_session


@db_operation
async def list_class_sessions(
    session: AsyncSession, class_id: int, actor: Actor
) -> List[AttendanceSession]:
    """Sessions of a teaching class ordered by session_number"""
    teaching_class = await get_teaching_class_by_id(session, class_id)
    ensure_can_view(actor, teaching_class)

    result = await session.execute(
        select(AttendanceSession)
        .where(AttendanceSession.teaching_class_id == class_id)
        .order_by(AttendanceSession.session_number, AttendanceSession.id)
    )
    return result.scalars().all()


async def update_session_status(
    session: AsyncSession, session_id: int, status: SessionStatus, actor: Actor
) -> AttendanceSession:
    """
    Смена статуса занятия. Вход в completed или выход из него меняет
    число учитываемых занятий, поэтому баллы класса пересчитываются.
    """
    status = SessionStatus(status)

    async def _status_operation(session: AsyncSession):
        attendance_session = await get_session_by_id(session, session_id)
        class_id = attendance_session.teaching_class_id
        teaching_class = await get_teaching_class_by_id(session, class_id)
        ensure_can_manage(actor, teaching_class, "change session status of")

        old_status = attendance_session.status
        attendance_session.status = status.value
        await session.flush()

        completed = SessionStatus.completed.value
        if old_status != status.value and completed in (old_status, status.value):
            await recompute_all_safely(
                session,
                class_id,
                "update_session_status",
                {"session_id": session_id, "status": status.value},
            )
            await session.refresh(attendance_session)

        return attendance_session

    return await with_db_transaction(session, _status_operation)


async def mark_attendance(
    session: AsyncSession,
    class_id: int,
    session_id: int,
    student_id: int,
    data: AttendanceMark,
    actor: Actor,
) -> Tuple[AttendanceLog, Optional[StudentScore]]:
    async def _mark_operation(session: AsyncSession):
        return await record_attendance(
            session, class_id, session_id, student_id, data.status, actor, data.note
        )

    log, score = await with_db_transaction(session, _mark_operation)

    log_business_event(
        "attendance_recorded",
        "attendance_session",
        session_id,
        {
            "class_id": class_id,
            "student_id": student_id,
            "status": data.status.value,
            "actor_id": actor.id,
        },
    )
    return log, score


@db_operation
async def get_session_logs(
    session: AsyncSession, session_id: int, actor: Actor
) -> List[AttendanceLog]:
    attendance_session = await get_session_by_id(session, session_id)
    teaching_class = await get_teaching_class_by_id(
        session, attendance_session.teaching_class_id
    )
    ensure_can_manage(actor, teaching_class, "view attendance logs of")

    result = await session.execute(
        select(AttendanceLog)
        .where(AttendanceLog.session_id == session_id)
        .order_by(AttendanceLog.student_id)
    )
    return result.scalars().all()


@db_operation
async def get_student_log(
    session: AsyncSession, session_id: int, student_id: int, actor: Actor
) -> AttendanceLog:
    """Отметку студента видят управляющие классом и сам студент"""
    validate_id(student_id, "Student ID")

    attendance_session = await get_session_by_id(session, session_id)
    teaching_class = await get_teaching_class_by_id(
        session, attendance_session.teaching_class_id
    )
    if not can_manage(actor, teaching_class) and not (
        actor.is_student and actor.id == student_id
    ):
        raise PermissionDeniedError(
            "view", f"attendance log of student {student_id}", "not your record"
        )

    result = await session.execute(
        select(AttendanceLog).where(
            and_(
                AttendanceLog.session_id == session_id,
                AttendanceLog.student_id == student_id,
            )
        )
    )
    log = result.scalar_one_or_none()
    if not log:
        raise NotFoundError(
            "Attendance log", f"session {session_id}, student {student_id}"
        )
    return log


async def delete_attendance_log(
    session: AsyncSession, log_id: int, actor: Actor
) -> None:
    """Удаление ошибочной отметки: студент возвращается в students_absent"""
    validate_id(log_id, "Log ID")

    async def _delete_operation(session: AsyncSession):
        result = await session.execute(
            select(AttendanceLog).where(AttendanceLog.id == log_id)
        )
        log = result.scalar_one_or_none()
        if not log:
            raise NotFoundError("Attendance log", str(log_id))

        attendance_session = await get_session_by_id(session, log.session_id)
        class_id = attendance_session.teaching_class_id
        teaching_class = await get_teaching_class_by_id(session, class_id)
        ensure_can_manage(actor, teaching_class, "delete attendance logs of")

        student_id = log.student_id
        await session.delete(log)
        if teaching_class.has_student(student_id):
            move_student(attendance_session, student_id, AttendanceStatus.absent)
        await session.flush()

        await recompute_all_safely(
            session,
            class_id,
            "delete_attendance_log",
            {"log_id": log_id, "student_id": student_id},
        )

    await with_db_transaction(session, _delete_operation)


@db_operation
async def get_schedulable_sessions_for_student(
    session: AsyncSession, class_id: int, actor: Actor
) -> List[AttendanceSession]:
    """Pending-занятия класса, на которые студент может подать заявку на отсутствие"""
    teaching_class = await get_teaching_class_by_id(session, class_id)
    if not is_enrolled(actor, teaching_class):
        raise StudentNotInClassError(class_id, actor.id)

    result = await session.execute(
        select(AttendanceSession)
        .where(
            and_(
                AttendanceSession.teaching_class_id == class_id,
                AttendanceSession.status == SessionStatus.pending.value,
            )
        )
        .order_by(AttendanceSession.date, AttendanceSession.start_time)
    )
    return result.scalars().all()
