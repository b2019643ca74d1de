import logging
from datetime import date, timedelta
from typing import List, Tuple

from sqlalchemy import and_, delete, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.core.logging_utils import log_business_event, log_suppressed_failure
from app.core.validations import combine_date_time
from app.classes.models.attendance import (
    AttendanceLog,
    AttendanceSession,
    SessionStatus,
)
from app.classes.models.teaching_classes import TeachingClass
from app.classes.schemas.schedule import ScheduleEntry
from app.classes.schemas.teaching_classes import SessionGenerationResult

logger = logging.getLogger(__name__)


def schedule_weekday(day: date) -> int:
    """День недели в нумерации расписания: 0=воскресенье .. 6=суббота"""
    return (day.weekday() + 1) % 7


def recurring_dates(
    entry: ScheduleEntry, start_date: date, end_date: date, limit: int
) -> List[date]:
    """
    Даты повторяющейся записи в диапазоне [start_date, end_date],
    без excluded_dates, не больше limit штук.
    """
    excluded = set(entry.excluded_dates)
    dates = []

    current_date = start_date
    while current_date <= end_date and len(dates) < limit:
        if (
            schedule_weekday(current_date) == entry.day_of_week
            and current_date not in excluded
        ):
            dates.append(current_date)
        current_date += timedelta(days=1)

    return dates


class SessionGenerator:
    """Генерация занятий (AttendanceSession) из расписания учебного класса"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def generate(self, teaching_class: TeachingClass) -> Tuple[int, int]:
        """
        Заменяет pending-занятия класса новыми по текущему расписанию.
        Занятия в статусах completed/in_progress/cancelled не трогаются.

        Returns:
            Tuple[deleted_pending_count, generated_count]
        """
        deleted = await self._delete_pending_sessions(teaching_class.id)

        if (
            not teaching_class.schedule
            or not teaching_class.course_start_date
            or not teaching_class.course_end_date
        ):
            return deleted, 0

        # Снимок состава на момент генерации
        roster = list(teaching_class.students or [])
        generated = 0

        for raw_entry in teaching_class.schedule:
            entry = ScheduleEntry.model_validate(raw_entry)

            if not entry.is_recurring:
                session_dates = list(entry.specific_dates)
            else:
                session_dates = recurring_dates(
                    entry,
                    teaching_class.course_start_date,
                    teaching_class.course_end_date,
                    teaching_class.total_sessions,
                )

            for session_date in session_dates:
                await self._create_session(teaching_class, entry, session_date, roster)
                generated += 1

        logger.debug(
            f"Generated {generated} sessions for class {teaching_class.id}",
            extra={"class_id": teaching_class.id, "deleted_pending": deleted},
        )
        return deleted, generated

    async def _delete_pending_sessions(self, class_id: int) -> int:
        pending_ids = (
            select(AttendanceSession.id)
            .where(
                and_(
                    AttendanceSession.teaching_class_id == class_id,
                    AttendanceSession.status == SessionStatus.pending.value,
                )
            )
        )
        # Отметки, поставленные на еще не проведенные занятия
        await self.session.execute(
            delete(AttendanceLog)
            .where(AttendanceLog.session_id.in_(pending_ids))
            .execution_options(synchronize_session=False)
        )

        result = await self.session.execute(
            delete(AttendanceSession).where(
                and_(
                    AttendanceSession.teaching_class_id == class_id,
                    AttendanceSession.status == SessionStatus.pending.value,
                )
            )
        )
        return result.rowcount or 0

    async def _next_session_number(self, class_id: int) -> int:
        result = await self.session.execute(
            select(func.count(AttendanceSession.id)).where(
                AttendanceSession.teaching_class_id == class_id
            )
        )
        return (result.scalar() or 0) + 1

    async def _create_session(
        self,
        teaching_class: TeachingClass,
        entry: ScheduleEntry,
        session_date: date,
        roster: List[int],
    ) -> AttendanceSession:
        # Номер считается в момент создания: следующие записи видят предыдущие
        attendance_session = AttendanceSession(
            teaching_class_id=teaching_class.id,
            session_number=await self._next_session_number(teaching_class.id),
            date=session_date,
            room_id=entry.room_id,
            start_time=combine_date_time(session_date, entry.start_time),
            end_time=combine_date_time(session_date, entry.end_time),
            status=SessionStatus.pending.value,
            students_present=[],
            students_absent=list(roster),
        )
        self.session.add(attendance_session)
        await self.session.flush()
        return attendance_session


async def generate_sessions(
    session: AsyncSession, teaching_class: TeachingClass
) -> SessionGenerationResult:
    """
    Best-effort генерация: ошибка откатывает только SAVEPOINT генерации,
    логируется и не прерывает вызывающий запрос.
    """
    class_id = teaching_class.id

    try:
        async with session.begin_nested():
            deleted, generated = await SessionGenerator(session).generate(
                teaching_class
            )
    except Exception as e:
        log_suppressed_failure(
            "SessionGenerationFailure",
            "generate_sessions",
            e,
            {"class_id": class_id},
        )
        return SessionGenerationResult(class_id=class_id, success=False, error=str(e))

    log_business_event(
        "sessions_generated",
        "teaching_class",
        class_id,
        {"deleted_pending": deleted, "generated": generated},
    )
    return SessionGenerationResult(
        class_id=class_id, deleted_pending=deleted, generated=generated
    )
