"""
Пересчет кэша баллов посещаемости (StudentScore).

Учитываются только завершенные занятия. Присутствие определяется отметкой
AttendanceLog со статусом "present"; late и excused считаются пропуском.
Если отметки нет, используется список students_present занятия.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from sqlalchemy import and_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.core import clock
from app.core.exceptions import NotFoundError
from app.core.logging_utils import log_suppressed_failure
from app.core.validations import validate_id
from app.classes.models.attendance import (
    AttendanceLog,
    AttendanceSession,
    AttendanceStatus,
    SessionStatus,
)
from app.classes.models.scores import StudentScore
from app.classes.models.teaching_classes import TeachingClass

logger = logging.getLogger(__name__)

MAX_ATTENDANCE_SCORE = 10
PENALTY_PER_ABSENCE = 2


def attendance_score_for(absent_count: int) -> int:
    return max(0, MAX_ATTENDANCE_SCORE - PENALTY_PER_ABSENCE * absent_count)


def is_failed_due_to_absent(absent_count: int, max_absent_allowed: int) -> bool:
    return absent_count > max_absent_allowed


def count_present(
    student_id: int,
    completed_sessions: List[AttendanceSession],
    log_statuses: Dict[int, str],
) -> int:
    """log_statuses: session_id -> статус отметки студента"""
    present = 0
    for attendance_session in completed_sessions:
        status = log_statuses.get(attendance_session.id)
        if status is not None:
            if status == AttendanceStatus.present.value:
                present += 1
        elif student_id in (attendance_session.students_present or []):
            present += 1
    return present


@dataclass
class RecomputeOutcome:
    student_id: int
    score: Optional[StudentScore] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None


async def _get_class(session: AsyncSession, class_id: int) -> TeachingClass:
    result = await session.execute(
        select(TeachingClass).where(TeachingClass.id == class_id)
    )
    teaching_class = result.scalar_one_or_none()
    if not teaching_class:
        raise NotFoundError("Teaching class", str(class_id))
    return teaching_class


async def _completed_sessions(
    session: AsyncSession, class_id: int
) -> List[AttendanceSession]:
    result = await session.execute(
        select(AttendanceSession)
        .where(
            and_(
                AttendanceSession.teaching_class_id == class_id,
                AttendanceSession.status == SessionStatus.completed.value,
            )
        )
        .order_by(AttendanceSession.session_number)
    )
    return list(result.scalars().all())


async def recompute(
    session: AsyncSession,
    class_id: int,
    student_id: int,
    teaching_class: Optional[TeachingClass] = None,
) -> StudentScore:
    """
    Пересчитывает и сохраняет (upsert) StudentScore для пары (класс, студент).
    Идемпотентен: без изменений данных повторный вызов дает тот же результат.
    """
    validate_id(class_id, "Class ID")
    validate_id(student_id, "Student ID")

    if teaching_class is None:
        teaching_class = await _get_class(session, class_id)
    max_absent_allowed = teaching_class.max_absent_allowed

    completed = await _completed_sessions(session, class_id)

    log_statuses = {}
    if completed:
        logs_result = await session.execute(
            select(AttendanceLog.session_id, AttendanceLog.status).where(
                and_(
                    AttendanceLog.session_id.in_([s.id for s in completed]),
                    AttendanceLog.student_id == student_id,
                )
            )
        )
        log_statuses = dict(logs_result.all())

    present_count = count_present(student_id, completed, log_statuses)
    absent_count = len(completed) - present_count

    score_result = await session.execute(
        select(StudentScore).where(
            and_(
                StudentScore.teaching_class_id == class_id,
                StudentScore.student_id == student_id,
            )
        )
    )
    score = score_result.scalar_one_or_none()
    if score is None:
        score = StudentScore(teaching_class_id=class_id, student_id=student_id)
        session.add(score)

    score.total_sessions = len(completed)
    score.absent_sessions = absent_count
    score.attendance_score = attendance_score_for(absent_count)
    score.max_absent_allowed = max_absent_allowed
    score.is_failed_due_to_absent = is_failed_due_to_absent(
        absent_count, max_absent_allowed
    )
    score.last_updated = clock.now()

    await session.flush()
    return score


async def recompute_all(session: AsyncSession, class_id: int) -> List[RecomputeOutcome]:
    """
    Пересчет для всех студентов класса, последовательно.
    Ошибка одного студента откатывает только его SAVEPOINT и попадает
    в результат; для каждого студента всегда есть запись.
    """
    teaching_class = await _get_class(session, class_id)
    student_ids = list(teaching_class.students or [])

    outcomes = []
    for student_id in student_ids:
        try:
            async with session.begin_nested():
                score = await recompute(session, class_id, student_id, teaching_class)
            outcomes.append(RecomputeOutcome(student_id=student_id, score=score))
        except Exception as e:
            log_suppressed_failure(
                "DerivedStateRecomputeFailure",
                "recompute_all",
                e,
                {"class_id": class_id, "student_id": student_id},
            )
            outcomes.append(RecomputeOutcome(student_id=student_id, error=str(e)))

    logger.debug(
        f"Recomputed scores for class {class_id}",
        extra={
            "class_id": class_id,
            "students": len(student_ids),
            "failed": sum(1 for outcome in outcomes if not outcome.success),
        },
    )
    return outcomes


async def recompute_all_safely(
    session: AsyncSession, class_id: int, operation: str, context: Dict = None
) -> Optional[List[RecomputeOutcome]]:
    """
    Вторичный пересчет после основного действия (отметка, смена статуса).
    Ошибка логируется и не пробрасывается; кэш восстановится при следующем чтении.
    """
    try:
        async with session.begin_nested():
            return await recompute_all(session, class_id)
    except Exception as e:
        log_suppressed_failure(
            "DerivedStateRecomputeFailure",
            operation,
            e,
            {"class_id": class_id, **(context or {})},
        )
        return None
