"""
Проверка пересечений расписания по преподавателю и аудитории.

Результат проверки - данные (ConflictCheckResult), а не исключение:
вызывающий код сам решает, блокировать ли изменение.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.core.exceptions import ValidationError
from app.core.validations import validate_id
from app.classes.models.subjects import Subject
from app.classes.models.teaching_classes import TeachingClass
from app.classes.schemas.schedule import (
    CandidateScheduleEntry,
    ConflictCheckResult,
    ScheduleConflict,
)

logger = logging.getLogger(__name__)


def intervals_overlap(a_start: str, a_end: str, b_start: str, b_end: str) -> bool:
    """
    Пересечение интервалов HH:MM с включенными границами:
    касание (08:00-10:00 и 10:00-12:00) тоже считается конфликтом.
    """
    return a_start <= b_end and a_end >= b_start


def _stored_entry_is_complete(entry: Dict[str, Any]) -> bool:
    # day_of_week=0 (воскресенье) - валидное значение, проверяем только None
    return all(
        entry.get(key) is not None
        for key in ("day_of_week", "start_time", "end_time", "room_id")
    )


def find_conflicts(
    teacher_id: int,
    candidates: Sequence[CandidateScheduleEntry],
    classes: Iterable[TeachingClass],
    subject_names: Optional[Dict[int, str]] = None,
) -> List[ScheduleConflict]:
    """Сравнивает кандидатов с расписаниями уже загруженных классов"""
    subject_names = subject_names or {}
    conflicts = []

    classes = list(classes)
    for candidate in candidates:
        if not candidate.is_complete:
            continue

        for other in classes:
            for entry in other.schedule or []:
                if not _stored_entry_is_complete(entry):
                    continue
                if entry["day_of_week"] != candidate.day_of_week:
                    continue
                if not intervals_overlap(
                    candidate.start_time,
                    candidate.end_time,
                    entry["start_time"],
                    entry["end_time"],
                ):
                    continue

                conflict_types = []
                if other.teacher_id is not None and other.teacher_id == teacher_id:
                    conflict_types.append("teacher")
                if entry["room_id"] == candidate.room_id:
                    conflict_types.append("room")

                for conflict_type in conflict_types:
                    conflicts.append(
                        ScheduleConflict(
                            type=conflict_type,
                            day_of_week=candidate.day_of_week,
                            room_id=candidate.room_id,
                            candidate_start=candidate.start_time,
                            candidate_end=candidate.end_time,
                            conflicting_start=entry["start_time"],
                            conflicting_end=entry["end_time"],
                            class_id=other.id,
                            class_name=other.class_name,
                            class_code=other.class_code,
                            subject_id=other.subject_id,
                            subject_name=subject_names.get(other.subject_id),
                            teacher_id=other.teacher_id,
                        )
                    )

    return conflicts


async def check_conflicts(
    session: AsyncSession,
    teacher_id: Optional[int],
    candidate_schedule: Sequence[Union[CandidateScheduleEntry, Dict[str, Any]]],
    exclude_class_id: Optional[int] = None,
) -> ConflictCheckResult:
    """
    Находит пересечения кандидатного расписания с другими учебными классами
    того же преподавателя (teacher) и любыми классами в той же аудитории (room).
    """
    if teacher_id is None:
        raise ValidationError("Teacher ID is required to check schedule conflicts")
    validate_id(teacher_id, "Teacher ID")

    if not candidate_schedule:
        raise ValidationError("Schedule is required to check conflicts")

    if exclude_class_id is not None:
        validate_id(exclude_class_id, "Class ID")

    candidates = [
        entry
        if isinstance(entry, CandidateScheduleEntry)
        else CandidateScheduleEntry.model_validate(entry)
        for entry in candidate_schedule
    ]

    query = select(TeachingClass)
    if exclude_class_id is not None:
        query = query.where(TeachingClass.id != exclude_class_id)
    result = await session.execute(query)
    classes = result.scalars().all()

    subject_ids = {tc.subject_id for tc in classes if tc.subject_id}
    subject_names = {}
    if subject_ids:
        subjects_result = await session.execute(
            select(Subject.id, Subject.name).where(Subject.id.in_(subject_ids))
        )
        subject_names = dict(subjects_result.all())

    conflicts = find_conflicts(teacher_id, candidates, classes, subject_names)

    if conflicts:
        logger.info(
            f"Found {len(conflicts)} schedule conflicts for teacher {teacher_id}",
            extra={
                "teacher_id": teacher_id,
                "exclude_class_id": exclude_class_id,
                "conflict_count": len(conflicts),
            },
        )

    return ConflictCheckResult(has_conflicts=bool(conflicts), conflicts=conflicts)
