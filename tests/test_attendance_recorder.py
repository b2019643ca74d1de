from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from sqlalchemy.future import select

from app.core.exceptions import (
    NotFoundError,
    PermissionDeniedError,
    StudentNotInClassError,
    ValidationError,
)
from app.core.permissions import Actor, ActorRole
from app.classes.models import AttendanceLog, AttendanceStatus, SessionStatus, StudentScore
from app.classes.services import attendance_recorder
from app.classes.services.attendance_recorder import move_student, record_attendance


@pytest_asyncio.fixture
async def enrolled(make_class, make_session, students):
    roster = [s.id for s in students]
    teaching_class = await make_class(students=roster)
    attendance_session = await make_session(teaching_class, 1, status=SessionStatus.completed)
    return teaching_class, attendance_session, roster


async def test_present_moves_student_between_lists(session, enrolled, teacher_actor):
    teaching_class, attendance_session, roster = enrolled
    student_id = roster[0]

    log, score = await record_attendance(
        session, teaching_class.id, attendance_session.id, student_id, "present", teacher_actor
    )

    assert log.status == "present"
    assert student_id in attendance_session.students_present
    assert student_id not in attendance_session.students_absent
    assert score.absent_sessions == 0
    assert score.attendance_score == 10


async def test_late_is_listed_present_but_scored_absent(session, enrolled, teacher_actor):
    teaching_class, attendance_session, roster = enrolled
    student_id = roster[1]

    log, score = await record_attendance(
        session, teaching_class.id, attendance_session.id, student_id, "late", teacher_actor
    )

    assert log.status == "late"
    assert student_id in attendance_session.students_present
    assert score.absent_sessions == 1


async def test_second_mark_updates_existing_log(session, enrolled, teacher_actor):
    teaching_class, attendance_session, roster = enrolled
    student_id = roster[0]

    first, _ = await record_attendance(
        session, teaching_class.id, attendance_session.id, student_id, "present", teacher_actor
    )
    second, score = await record_attendance(
        session,
        teaching_class.id,
        attendance_session.id,
        student_id,
        "excused",
        teacher_actor,
        note="medical",
    )
    await session.commit()

    assert first.id == second.id
    assert second.note == "medical"
    assert student_id in attendance_session.students_absent
    assert student_id not in attendance_session.students_present
    assert score.absent_sessions == 1

    logs = await session.execute(
        select(AttendanceLog).where(AttendanceLog.session_id == attendance_session.id)
    )
    assert len(logs.scalars().all()) == 1


async def test_status_only_update_keeps_previous_note(session, enrolled, teacher_actor):
    teaching_class, attendance_session, roster = enrolled
    args = (session, teaching_class.id, attendance_session.id, roster[0])

    await record_attendance(*args, "absent", teacher_actor, note="sick note")
    log, _ = await record_attendance(*args, "excused", teacher_actor)

    assert log.status == "excused"
    assert log.note == "sick note"


async def test_marking_recomputes_whole_class(session, enrolled, admin_actor):
    teaching_class, attendance_session, roster = enrolled

    await record_attendance(
        session, teaching_class.id, attendance_session.id, roster[0], "present", admin_actor
    )
    await session.commit()

    rows = await session.execute(
        select(StudentScore).where(StudentScore.teaching_class_id == teaching_class.id)
    )
    assert sorted(score.student_id for score in rows.scalars().all()) == sorted(roster)


async def test_invalid_status_is_rejected(session, enrolled, teacher_actor):
    teaching_class, attendance_session, roster = enrolled

    with pytest.raises(ValidationError):
        await record_attendance(
            session, teaching_class.id, attendance_session.id, roster[0], "sleeping", teacher_actor
        )


async def test_other_teacher_cannot_mark(session, enrolled, other_teacher):
    teaching_class, attendance_session, roster = enrolled
    actor = Actor(id=other_teacher.id, role=ActorRole.teacher)

    with pytest.raises(PermissionDeniedError):
        await record_attendance(
            session, teaching_class.id, attendance_session.id, roster[0], "present", actor
        )


async def test_student_must_be_enrolled(session, enrolled, teacher_actor, make_user):
    teaching_class, attendance_session, _ = enrolled
    outsider = await make_user()

    with pytest.raises(StudentNotInClassError):
        await record_attendance(
            session, teaching_class.id, attendance_session.id, outsider.id, "present", teacher_actor
        )


async def test_session_must_belong_to_class(
    session, enrolled, make_class, make_session, teacher_actor
):
    teaching_class, _, roster = enrolled
    other_class = await make_class(class_name="Other", students=roster)
    foreign_session = await make_session(other_class, 1)

    with pytest.raises(NotFoundError):
        await record_attendance(
            session, teaching_class.id, foreign_session.id, roster[0], "present", teacher_actor
        )


async def test_recompute_failure_keeps_the_mark(session, enrolled, teacher_actor):
    teaching_class, attendance_session, roster = enrolled

    with patch.object(
        attendance_recorder, "recompute_all_safely", AsyncMock(return_value=None)
    ):
        log, score = await record_attendance(
            session, teaching_class.id, attendance_session.id, roster[0], "present", teacher_actor
        )
    await session.commit()

    assert score is None
    assert log.status == "present"
    stored = await session.execute(
        select(AttendanceLog.status).where(AttendanceLog.id == log.id)
    )
    assert stored.scalar() == "present"


def test_move_student_never_duplicates():
    class FakeSession:
        students_present = [1, 2]
        students_absent = [3]

    fake = FakeSession()
    move_student(fake, 3, AttendanceStatus.present)
    move_student(fake, 3, AttendanceStatus.present)
    assert fake.students_present == [1, 2, 3]
    assert fake.students_absent == []

    move_student(fake, 1, AttendanceStatus.absent)
    assert fake.students_present == [2, 3]
    assert fake.students_absent == [1]
