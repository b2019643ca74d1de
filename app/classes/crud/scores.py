from collections import Counter
from typing import Dict, List, Optional

from sqlalchemy import and_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.core.database import with_db_transaction
from app.core.exceptions import PermissionDeniedError, StudentNotInClassError
from app.core.logging_utils import log_business_event, log_suppressed_failure
from app.core.permissions import Actor, can_manage, ensure_can_manage, is_enrolled
from app.core.validations import validate_id
from app.classes.crud.teaching_classes import get_teaching_class_by_id
from app.classes.crud.users import get_users_map
from app.classes.models.attendance import (
    AttendanceLog,
    AttendanceSession,
    AttendanceStatus,
    SessionStatus,
)
from app.classes.models.scores import StudentScore
from app.classes.schemas.scores import (
    AttendanceSummary,
    ClassAttendanceStats,
    MyAttendanceScore,
    RecomputeAllResult,
    RecomputeEntry,
    ScoreUpdate,
    SessionStats,
    StudentAttendanceDetail,
    StudentScoreRead,
    StudentSessionAttendance,
    StudentStats,
)
from app.classes.services import score_aggregator

# Занятия, на которых уже можно ставить отметки
MARKABLE_STATUSES = frozenset(
    {SessionStatus.in_progress.value, SessionStatus.completed.value}
)


async def _class_sessions(session: AsyncSession, class_id: int) -> List[AttendanceSession]:
    result = await session.execute(
        select(AttendanceSession)
        .where(AttendanceSession.teaching_class_id == class_id)
        .order_by(AttendanceSession.session_number, AttendanceSession.id)
    )
    return list(result.scalars().all())


async def _student_logs(
    session: AsyncSession, session_ids: List[int], student_id: int
) -> Dict[int, AttendanceLog]:
    if not session_ids:
        return {}
    result = await session.execute(
        select(AttendanceLog).where(
            and_(
                AttendanceLog.session_id.in_(session_ids),
                AttendanceLog.student_id == student_id,
            )
        )
    )
    return {log.session_id: log for log in result.scalars().all()}


def _effective_status(
    attendance_session: AttendanceSession, student_id: int, log: Optional[AttendanceLog]
) -> str:
    """Статус по отметке, иначе по спискам занятия, иначе absent"""
    if log is not None:
        return log.status
    if student_id in (attendance_session.students_present or []):
        return AttendanceStatus.present.value
    return AttendanceStatus.absent.value


async def _recompute_on_read(
    session: AsyncSession, class_id: int, student_id: int
) -> Optional[StudentScore]:
    try:
        async with session.begin_nested():
            return await score_aggregator.recompute(session, class_id, student_id)
    except Exception as e:
        log_suppressed_failure(
            "DerivedStateRecomputeFailure",
            "recompute_on_read",
            e,
            {"class_id": class_id, "student_id": student_id},
        )
        return None


async def update_student_score(
    session: AsyncSession,
    class_id: int,
    student_id: int,
    data: ScoreUpdate,
    actor: Actor,
) -> StudentScore:
    """Ручная корректировка итоговой оценки и заметки преподавателем"""
    validate_id(student_id, "Student ID")

    async def _update_operation(session: AsyncSession):
        teaching_class = await get_teaching_class_by_id(session, class_id)
        ensure_can_manage(actor, teaching_class, "update scores of")
        if not teaching_class.has_student(student_id):
            raise StudentNotInClassError(class_id, student_id)

        result = await session.execute(
            select(StudentScore).where(
                and_(
                    StudentScore.teaching_class_id == class_id,
                    StudentScore.student_id == student_id,
                )
            )
        )
        score = result.scalar_one_or_none()
        if score is None:
            score = await score_aggregator.recompute(
                session, class_id, student_id, teaching_class
            )

        if data.final_score is not None:
            score.final_score = data.final_score
        if data.attendance_score is not None:
            score.attendance_score = data.attendance_score
        if data.note is not None:
            score.note = data.note

        await session.flush()
        return score

    return await with_db_transaction(session, _update_operation)


async def recompute_student_score(
    session: AsyncSession, class_id: int, student_id: int, actor: Actor
) -> StudentScore:
    validate_id(student_id, "Student ID")

    async def _recompute_operation(session: AsyncSession):
        teaching_class = await get_teaching_class_by_id(session, class_id)
        ensure_can_manage(actor, teaching_class, "recalculate scores of")
        if not teaching_class.has_student(student_id):
            raise StudentNotInClassError(class_id, student_id)

        return await score_aggregator.recompute(
            session, class_id, student_id, teaching_class
        )

    return await with_db_transaction(session, _recompute_operation)


async def recompute_class_scores(
    session: AsyncSession, class_id: int, actor: Actor
) -> RecomputeAllResult:
    async def _recompute_operation(session: AsyncSession):
        teaching_class = await get_teaching_class_by_id(session, class_id)
        ensure_can_manage(actor, teaching_class, "recalculate scores of")

        outcomes = await score_aggregator.recompute_all(session, class_id)
        return [
            RecomputeEntry(
                student_id=outcome.student_id,
                success=outcome.success,
                score=(
                    StudentScoreRead.model_validate(outcome.score)
                    if outcome.score is not None
                    else None
                ),
                error=outcome.error,
            )
            for outcome in outcomes
        ]

    entries = await with_db_transaction(session, _recompute_operation)
    success_count = sum(1 for entry in entries if entry.success)

    log_business_event(
        "scores_recomputed",
        "teaching_class",
        class_id,
        {"students": len(entries), "failed": len(entries) - success_count},
    )
    return RecomputeAllResult(
        class_id=class_id,
        results=entries,
        success_count=success_count,
        error_count=len(entries) - success_count,
    )


async def get_class_attendance_stats(
    session: AsyncSession, class_id: int, actor: Actor
) -> ClassAttendanceStats:
    """
    Матрица статусов студент x занятие и сводка по занятиям.
    Баллы всего класса пересчитываются перед чтением: кэш StudentScore
    мог устареть (студент добавлен позже, изменен max_absent_allowed).
    """

    async def _stats_operation(session: AsyncSession):
        teaching_class = await get_teaching_class_by_id(session, class_id)
        ensure_can_manage(actor, teaching_class, "view attendance statistics of")

        await score_aggregator.recompute_all_safely(
            session, class_id, "attendance_stats_read"
        )

        sessions = await _class_sessions(session, class_id)
        student_ids = list(teaching_class.students or [])

        logs_by_key = {}
        if sessions:
            logs_result = await session.execute(
                select(AttendanceLog).where(
                    AttendanceLog.session_id.in_([s.id for s in sessions])
                )
            )
            logs_by_key = {
                (log.session_id, log.student_id): log
                for log in logs_result.scalars().all()
            }

        scores_result = await session.execute(
            select(StudentScore).where(StudentScore.teaching_class_id == class_id)
        )
        scores = {score.student_id: score for score in scores_result.scalars().all()}
        users = await get_users_map(session, student_ids)

        student_stats = []
        for student_id in student_ids:
            score = scores.get(student_id)
            user = users.get(student_id)
            statuses = {}
            for attendance_session in sessions:
                log = logs_by_key.get((attendance_session.id, student_id))
                statuses[attendance_session.id] = (
                    log.status if log else AttendanceStatus.absent.value
                )

            student_stats.append(
                StudentStats(
                    student_id=student_id,
                    full_name=user.full_name if user else None,
                    student_code=user.student_code if user else None,
                    sessions=statuses,
                    total_sessions=score.total_sessions if score else 0,
                    absent_sessions=score.absent_sessions if score else 0,
                    attendance_score=score.attendance_score if score else 10,
                    is_failed_due_to_absent=(
                        score.is_failed_due_to_absent if score else False
                    ),
                    final_score=score.final_score if score else None,
                )
            )

        roster_size = len(student_ids)
        session_stats = []
        for attendance_session in sessions:
            present_count = len(attendance_session.students_present or [])
            session_stats.append(
                SessionStats(
                    session_id=attendance_session.id,
                    session_number=attendance_session.session_number,
                    date=attendance_session.date,
                    status=attendance_session.status,
                    present_count=present_count,
                    absent_count=len(attendance_session.students_absent or []),
                    attendance_rate=(
                        round(present_count / roster_size * 100, 2)
                        if roster_size
                        else 0
                    ),
                )
            )

        return ClassAttendanceStats(
            class_id=class_id,
            completed_sessions=sum(
                1 for s in sessions if s.status == SessionStatus.completed.value
            ),
            total_sessions=teaching_class.total_sessions,
            sessions=session_stats,
            students=student_stats,
        )

    return await with_db_transaction(session, _stats_operation)


async def get_student_attendance_detail(
    session: AsyncSession, class_id: int, student_id: int, actor: Actor
) -> StudentAttendanceDetail:
    """Посещаемость одного студента по всем занятиям; баллы пересчитываются при чтении"""
    validate_id(student_id, "Student ID")

    async def _detail_operation(session: AsyncSession):
        teaching_class = await get_teaching_class_by_id(session, class_id)
        if not can_manage(actor, teaching_class) and actor.id != student_id:
            raise PermissionDeniedError(
                "view", f"attendance of student {student_id}", "not your record"
            )
        if not teaching_class.has_student(student_id):
            raise StudentNotInClassError(class_id, student_id)

        score = await _recompute_on_read(session, class_id, student_id)

        sessions = await _class_sessions(session, class_id)
        logs = await _student_logs(session, [s.id for s in sessions], student_id)

        summary = AttendanceSummary()
        rows = []
        for attendance_session in sessions:
            log = logs.get(attendance_session.id)
            status = _effective_status(attendance_session, student_id, log)

            if attendance_session.status == SessionStatus.completed.value:
                summary.completed_sessions += 1
                if status in AttendanceSummary.model_fields:
                    setattr(summary, status, getattr(summary, status) + 1)

            rows.append(
                StudentSessionAttendance(
                    session_id=attendance_session.id,
                    session_number=attendance_session.session_number,
                    date=attendance_session.date,
                    start_time=attendance_session.start_time,
                    end_time=attendance_session.end_time,
                    session_status=attendance_session.status,
                    attendance_status=status,
                    note=log.note if log else None,
                    can_mark_attendance=attendance_session.status in MARKABLE_STATUSES,
                )
            )

        return StudentAttendanceDetail(
            class_id=class_id,
            student_id=student_id,
            sessions=rows,
            summary=summary,
            score=StudentScoreRead.model_validate(score) if score else None,
        )

    return await with_db_transaction(session, _detail_operation)


async def get_my_attendance_score(
    session: AsyncSession, class_id: int, actor: Actor
) -> MyAttendanceScore:
    """Собственная посещаемость студента по всем занятиям класса"""

    async def _my_score_operation(session: AsyncSession):
        teaching_class = await get_teaching_class_by_id(session, class_id)
        if not is_enrolled(actor, teaching_class):
            raise StudentNotInClassError(class_id, actor.id)

        score = await _recompute_on_read(session, class_id, actor.id)

        sessions = await _class_sessions(session, class_id)
        logs = await _student_logs(session, [s.id for s in sessions], actor.id)
        counts = Counter(
            _effective_status(s, actor.id, logs.get(s.id)) for s in sessions
        )

        total = len(sessions)
        present = counts[AttendanceStatus.present.value]
        return MyAttendanceScore(
            class_id=class_id,
            student_id=actor.id,
            total_sessions=total,
            present=present,
            absent=counts[AttendanceStatus.absent.value],
            late=counts[AttendanceStatus.late.value],
            excused=counts[AttendanceStatus.excused.value],
            attendance_rate=round(present / total * 100, 2) if total else 0,
            score=StudentScoreRead.model_validate(score) if score else None,
        )

    return await with_db_transaction(session, _my_score_operation)
