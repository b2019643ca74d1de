"""
Каскадные изменения учебного класса.

TeachingClass - корень агрегата: владеет занятиями, занятия - отметками,
StudentScore - производная проекция. Основное действие выполняется в
транзакции запроса; каждый шаг уборки - в своем SAVEPOINT, поэтому упавший
шаг откатывается отдельно, логируется, и остальные шаги все равно выполняются.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy import and_, delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.core.exceptions import NotFoundError, StudentNotInClassError
from app.core.logging_utils import log_suppressed_failure
from app.core.validations import ensure_range_within
from app.classes.models.attendance import AttendanceLog, AttendanceSession
from app.classes.models.scores import StudentScore
from app.classes.models.semesters import Semester
from app.classes.models.teaching_classes import TeachingClass
from app.classes.schemas.teaching_classes import SessionGenerationResult
from app.classes.services.session_generator import generate_sessions

logger = logging.getLogger(__name__)


async def _run_step(
    session: AsyncSession,
    step: str,
    action: Callable[[], Awaitable[Any]],
    context: Dict[str, Any],
    failed_steps: List[str],
) -> None:
    try:
        async with session.begin_nested():
            await action()
    except Exception as e:
        log_suppressed_failure("CascadeStepFailure", step, e, context)
        failed_steps.append(step)


def _class_session_ids(class_id: int):
    return select(AttendanceSession.id).where(
        AttendanceSession.teaching_class_id == class_id
    )


async def remove_student(
    session: AsyncSession, teaching_class: TeachingClass, student_id: int
) -> List[str]:
    """
    Исключает студента из класса и удаляет его данные по классу:
    StudentScore, AttendanceLog всех занятий класса, членство в списках занятий.
    Данные других студентов не затрагиваются.

    Returns:
        Список упавших шагов уборки (пустой при полном успехе)
    """
    class_id = teaching_class.id
    if not teaching_class.has_student(student_id):
        raise StudentNotInClassError(class_id, student_id)

    teaching_class.students = [s for s in teaching_class.students if s != student_id]
    await session.flush()

    context = {"class_id": class_id, "student_id": student_id}
    failed_steps = []

    async def delete_score():
        await session.execute(
            delete(StudentScore)
            .where(
                and_(
                    StudentScore.teaching_class_id == class_id,
                    StudentScore.student_id == student_id,
                )
            )
            .execution_options(synchronize_session=False)
        )

    async def delete_logs():
        await session.execute(
            delete(AttendanceLog)
            .where(
                and_(
                    AttendanceLog.session_id.in_(_class_session_ids(class_id)),
                    AttendanceLog.student_id == student_id,
                )
            )
            .execution_options(synchronize_session=False)
        )

    async def strip_session_lists():
        result = await session.execute(
            select(AttendanceSession).where(
                AttendanceSession.teaching_class_id == class_id
            )
        )
        for attendance_session in result.scalars().all():
            present = attendance_session.students_present or []
            absent = attendance_session.students_absent or []
            if student_id in present or student_id in absent:
                attendance_session.students_present = [
                    s for s in present if s != student_id
                ]
                attendance_session.students_absent = [
                    s for s in absent if s != student_id
                ]
        await session.flush()

    await _run_step(session, "delete_student_score", delete_score, context, failed_steps)
    await _run_step(session, "delete_student_logs", delete_logs, context, failed_steps)
    await _run_step(
        session, "strip_session_membership", strip_session_lists, context, failed_steps
    )

    return failed_steps


async def delete_teaching_class(
    session: AsyncSession, teaching_class: TeachingClass
) -> List[str]:
    """
    Удаляет класс вместе с занятиями, отметками и баллами.
    Порядок: отметки, занятия, баллы, сам класс. Ошибка удаления самого
    класса пробрасывается; ошибки шагов уборки только логируются.
    """
    class_id = teaching_class.id
    context = {"class_id": class_id}
    failed_steps = []

    async def delete_logs():
        await session.execute(
            delete(AttendanceLog)
            .where(AttendanceLog.session_id.in_(_class_session_ids(class_id)))
            .execution_options(synchronize_session=False)
        )

    async def delete_sessions():
        await session.execute(
            delete(AttendanceSession)
            .where(AttendanceSession.teaching_class_id == class_id)
            .execution_options(synchronize_session=False)
        )

    async def delete_scores():
        await session.execute(
            delete(StudentScore)
            .where(StudentScore.teaching_class_id == class_id)
            .execution_options(synchronize_session=False)
        )

    await _run_step(session, "delete_attendance_logs", delete_logs, context, failed_steps)
    await _run_step(session, "delete_attendance_sessions", delete_sessions, context, failed_steps)
    await _run_step(session, "delete_student_scores", delete_scores, context, failed_steps)

    await session.delete(teaching_class)
    await session.flush()

    if failed_steps:
        logger.warning(
            f"Teaching class {class_id} deleted with incomplete cleanup",
            extra={"class_id": class_id, "failed_steps": failed_steps},
        )

    return failed_steps


async def get_semester(session: AsyncSession, semester_id: int) -> Semester:
    result = await session.execute(select(Semester).where(Semester.id == semester_id))
    semester = result.scalar_one_or_none()
    if not semester:
        raise NotFoundError("Semester", str(semester_id))
    return semester


def validate_course_window(teaching_class, semester: Semester) -> None:
    """Даты курса должны лежать внутри семестра"""
    start = teaching_class.course_start_date
    end = teaching_class.course_end_date
    if start is None and end is None:
        return

    ensure_range_within(
        start or semester.start_date,
        end or semester.end_date,
        semester.start_date,
        semester.end_date,
        "Course",
    )


def should_generate_sessions(teaching_class: TeachingClass) -> bool:
    return bool(
        teaching_class.auto_generate_sessions
        and teaching_class.schedule
        and teaching_class.course_start_date
        and teaching_class.course_end_date
    )


async def apply_schedule_change(
    session: AsyncSession, teaching_class: TeachingClass
) -> Optional[SessionGenerationResult]:
    """
    Повторная проверка дат курса и перегенерация pending-занятий
    после изменения расписания или диапазона дат.
    """
    semester = await get_semester(session, teaching_class.semester_id)
    validate_course_window(teaching_class, semester)

    if not should_generate_sessions(teaching_class):
        return None

    return await generate_sessions(session, teaching_class)
