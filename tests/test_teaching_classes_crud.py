from datetime import date

import pytest
from sqlalchemy import func
from sqlalchemy.future import select

from app.core import clock
from app.core.exceptions import (
    AuthorizationError,
    BusinessLogicError,
    NotFoundError,
    PermissionDeniedError,
    StudentNotInClassError,
    ValidationError,
)
from app.core.permissions import Actor, ActorRole
from app.classes.crud import teaching_classes as crud
from app.classes.models import (
    AttendanceSession,
    Notification,
    SessionStatus,
    StudentScore,
    TeachingClass,
)
from app.classes.schemas.schedule import ConflictCheckRequest
from app.classes.schemas.teaching_classes import (
    ClassStatus,
    TeachingClassCreate,
    TeachingClassFilters,
    TeachingClassUpdate,
)
from app.classes.services import score_aggregator
from app.classes.services.class_status import derive_class_status
from app.classes.services.session_generator import SessionGenerator


def _create_payload(semester, rooms, **overrides):
    payload = {
        "class_name": "Algorithms 02",
        "class_code": "CS210-02",
        "semester_id": semester.id,
        "schedule": [
            {"day_of_week": 3, "start_time": "10:00", "end_time": "11:30", "room_id": rooms[0].id}
        ],
        "course_start_date": "2024-01-01",
        "course_end_date": "2024-01-31",
    }
    payload.update(overrides)
    return TeachingClassCreate(**payload)


async def _session_count(session, class_id, status=None):
    query = select(func.count(AttendanceSession.id)).where(
        AttendanceSession.teaching_class_id == class_id
    )
    if status is not None:
        query = query.where(AttendanceSession.status == status.value)
    result = await session.execute(query)
    return result.scalar()


# ===== Class status =====


@pytest.mark.parametrize(
    "today, expected",
    [
        (date(2023, 12, 31), (ClassStatus.not_started, False)),
        (date(2024, 1, 1), (ClassStatus.ongoing, True)),
        (date(2024, 5, 31), (ClassStatus.ongoing, True)),
        (date(2024, 6, 1), (ClassStatus.ended, False)),
    ],
)
def test_derive_class_status(today, expected):
    assert derive_class_status(date(2024, 1, 1), date(2024, 5, 31), today) == expected


def test_derive_class_status_without_semester_dates():
    assert derive_class_status(None, date(2024, 5, 31), date(2024, 2, 1)) == (
        ClassStatus.unknown,
        False,
    )


async def test_serialized_class_carries_status(session, make_class, monkeypatch):
    teaching_class = await make_class()
    monkeypatch.setattr(clock, "today", lambda: date(2024, 3, 1))

    read = await crud.serialize_teaching_class(session, teaching_class)

    assert read.status == ClassStatus.ongoing
    assert read.is_active is True
    assert read.schedule[0].day_of_week == 1


# ===== Create =====


async def test_teacher_creates_own_class_with_sessions(
    session, teacher, teacher_actor, semester, rooms
):
    teaching_class = await crud.create_teaching_class(
        session, _create_payload(semester, rooms), teacher_actor
    )

    assert teaching_class.id is not None
    assert teaching_class.teacher_id == teacher.id
    # среды января 2024: 3, 10, 17, 24, 31
    assert await _session_count(session, teaching_class.id) == 5


async def test_create_without_auto_generation(session, teacher_actor, semester, rooms):
    teaching_class = await crud.create_teaching_class(
        session,
        _create_payload(semester, rooms, auto_generate_sessions=False),
        teacher_actor,
    )

    assert await _session_count(session, teaching_class.id) == 0


async def test_teacher_cannot_create_class_for_someone_else(
    session, teacher_actor, other_teacher, semester, rooms
):
    with pytest.raises(PermissionDeniedError):
        await crud.create_teaching_class(
            session,
            _create_payload(semester, rooms, teacher_id=other_teacher.id),
            teacher_actor,
        )


async def test_student_cannot_create_class(session, students, semester, rooms):
    actor = Actor(id=students[0].id, role=ActorRole.student)

    with pytest.raises(AuthorizationError):
        await crud.create_teaching_class(session, _create_payload(semester, rooms), actor)


async def test_create_rejects_course_outside_semester(
    session, teacher_actor, semester, rooms
):
    with pytest.raises(ValidationError):
        await crud.create_teaching_class(
            session,
            _create_payload(semester, rooms, course_end_date="2024-07-01"),
            teacher_actor,
        )


async def test_create_with_unknown_semester(session, teacher_actor, rooms, semester):
    payload = _create_payload(semester, rooms, semester_id=4242)

    with pytest.raises(NotFoundError):
        await crud.create_teaching_class(session, payload, teacher_actor)


async def test_admin_must_assign_a_real_teacher(session, admin_actor, students, semester, rooms):
    with pytest.raises(BusinessLogicError):
        await crud.create_teaching_class(
            session,
            _create_payload(semester, rooms, teacher_id=students[0].id),
            admin_actor,
        )


async def test_create_rejects_roster_ids_that_are_not_students(
    session, teacher_actor, other_teacher, semester, rooms
):
    with_teacher = _create_payload(semester, rooms, students=[other_teacher.id])
    with_unknown = _create_payload(semester, rooms, students=[4242])

    with pytest.raises(BusinessLogicError):
        await crud.create_teaching_class(session, with_teacher, teacher_actor)
    with pytest.raises(NotFoundError):
        await crud.create_teaching_class(session, with_unknown, teacher_actor)

    count = await session.execute(select(func.count(TeachingClass.id)))
    assert count.scalar() == 0


# ===== Update =====


async def test_schedule_update_regenerates_and_notifies(
    session, make_class, make_session, students, teacher_actor, rooms
):
    roster = [s.id for s in students]
    teaching_class = await make_class(students=roster)
    class_id = teaching_class.id
    await make_session(teaching_class, 1, status=SessionStatus.completed)
    await make_session(teaching_class, 2, status=SessionStatus.pending)

    update = TeachingClassUpdate(
        schedule=[
            {"day_of_week": 5, "start_time": "12:00", "end_time": "13:30", "room_id": rooms[1].id}
        ]
    )
    updated = await crud.update_teaching_class(session, class_id, update, teacher_actor)

    assert updated.schedule[0]["day_of_week"] == 5
    # пятницы января 2024: 5, 12, 19, 26
    assert await _session_count(session, class_id, SessionStatus.pending) == 4
    assert await _session_count(session, class_id, SessionStatus.completed) == 1

    notified = await session.execute(
        select(Notification.receiver_id).where(Notification.type == "SCHEDULE_UPDATE")
    )
    assert sorted(notified.scalars().all()) == sorted(roster)


async def test_update_without_schedule_change_does_not_regenerate(
    session, make_class, make_session, teacher_actor
):
    teaching_class = await make_class()
    class_id = teaching_class.id
    await make_session(teaching_class, 1, status=SessionStatus.pending)

    updated = await crud.update_teaching_class(
        session, class_id, TeachingClassUpdate(class_name="Renamed"), teacher_actor
    )

    assert updated.class_name == "Renamed"
    assert await _session_count(session, class_id) == 1


async def test_lower_absence_threshold_recomputes_failed_flag(
    session, make_class, make_session, students, teacher_actor
):
    student_id = students[0].id
    teaching_class = await make_class(students=[student_id], max_absent_allowed=3)
    class_id = teaching_class.id
    await make_session(teaching_class, 1, status=SessionStatus.completed)
    await make_session(teaching_class, 2, status=SessionStatus.completed)
    before = await score_aggregator.recompute(session, class_id, student_id)
    await session.commit()
    assert (before.absent_sessions, before.is_failed_due_to_absent) == (2, False)

    await crud.update_teaching_class(
        session, class_id, TeachingClassUpdate(max_absent_allowed=1), teacher_actor
    )

    result = await session.execute(
        select(StudentScore).where(
            StudentScore.teaching_class_id == class_id,
            StudentScore.student_id == student_id,
        )
    )
    score = result.scalar_one()
    assert score.max_absent_allowed == 1
    assert score.is_failed_due_to_absent is True


async def test_update_ignores_null_for_required_fields(session, make_class, teacher_actor):
    teaching_class = await make_class()

    updated = await crud.update_teaching_class(
        session,
        teaching_class.id,
        TeachingClassUpdate(class_name=None, class_code=None),
        teacher_actor,
    )

    assert updated.class_name == "Databases 01"
    assert updated.class_code is None


async def test_only_admin_reassigns_teacher(
    session, make_class, teacher_actor, admin_actor, other_teacher
):
    teaching_class = await make_class()
    class_id = teaching_class.id
    other_teacher_id = other_teacher.id

    with pytest.raises(PermissionDeniedError):
        await crud.update_teaching_class(
            session, class_id, TeachingClassUpdate(teacher_id=other_teacher_id), teacher_actor
        )

    updated = await crud.update_teaching_class(
        session, class_id, TeachingClassUpdate(teacher_id=other_teacher_id), admin_actor
    )
    assert updated.teacher_id == other_teacher_id


async def test_other_teacher_cannot_update(session, make_class, other_teacher):
    teaching_class = await make_class()
    actor = Actor(id=other_teacher.id, role=ActorRole.teacher)

    with pytest.raises(PermissionDeniedError):
        await crud.update_teaching_class(
            session, teaching_class.id, TeachingClassUpdate(class_name="Mine"), actor
        )


# ===== Read =====


async def test_student_sees_only_enrolled_class(session, make_class, students):
    teaching_class = await make_class(students=[students[0].id])

    enrolled = Actor(id=students[0].id, role=ActorRole.student)
    assert (await crud.get_teaching_class(session, teaching_class.id, enrolled)).id == (
        teaching_class.id
    )

    outsider = Actor(id=students[1].id, role=ActorRole.student)
    with pytest.raises(PermissionDeniedError):
        await crud.get_teaching_class(session, teaching_class.id, outsider)


async def test_list_with_filters_and_search(session, make_class, other_teacher):
    await make_class(class_name="Databases 01", class_code="CS301-01")
    await make_class(class_name="Databases 02", class_code="CS301-02")
    await make_class(class_name="Networks", class_code="CS330", teacher_id=other_teacher.id)

    classes, total = await crud.list_teaching_classes(session, skip=0, limit=2)
    assert total == 3
    assert len(classes) == 2

    classes, total = await crud.list_teaching_classes(
        session, filters=TeachingClassFilters(search="databases")
    )
    assert total == 2

    classes, total = await crud.list_teaching_classes(
        session, filters=TeachingClassFilters(teacher_id=other_teacher.id)
    )
    assert [tc.class_name for tc in classes] == ["Networks"]


async def test_list_validates_paging(session):
    with pytest.raises(ValidationError):
        await crud.list_teaching_classes(session, skip=-1)

    with pytest.raises(ValidationError):
        await crud.list_teaching_classes(session, limit=101)


async def test_classes_for_teacher_and_student(session, make_class, teacher, students):
    first = await make_class(class_name="A", students=[students[0].id])
    await make_class(class_name="B", students=[students[1].id])

    assert len(await crud.list_classes_for_teacher(session, teacher.id)) == 2
    student_classes = await crud.list_classes_for_student(session, students[0].id)
    assert [tc.id for tc in student_classes] == [first.id]


# ===== Roster =====


async def test_add_student_and_duplicate(session, make_class, students, teacher_actor):
    teaching_class = await make_class()
    class_id = teaching_class.id
    student_id = students[0].id

    updated = await crud.add_student(session, class_id, student_id, teacher_actor)
    assert updated.students == [student_id]

    notified = await session.execute(
        select(Notification).where(Notification.receiver_id == student_id)
    )
    assert notified.scalar_one().type == "CLASS_ENROLLMENT"

    with pytest.raises(BusinessLogicError):
        await crud.add_student(session, class_id, student_id, teacher_actor)


async def test_student_added_later_is_not_put_into_existing_sessions(
    session, make_class, students, teacher_actor
):
    first, newcomer = students[0].id, students[1].id
    teaching_class = await make_class(students=[first])
    class_id = teaching_class.id
    await SessionGenerator(session).generate(teaching_class)
    await session.commit()

    result = await session.execute(
        select(AttendanceSession)
        .where(AttendanceSession.teaching_class_id == class_id)
        .order_by(AttendanceSession.session_number)
    )
    generated = result.scalars().all()
    assert len(generated) == 5
    for attendance_session in generated[:2]:
        attendance_session.status = SessionStatus.completed.value
    await session.commit()

    await crud.add_student(session, class_id, newcomer, teacher_actor)

    result = await session.execute(
        select(AttendanceSession).where(AttendanceSession.teaching_class_id == class_id)
    )
    for attendance_session in result.scalars().all():
        assert attendance_session.students_absent == [first]
        assert newcomer not in attendance_session.students_present

    # без отметок и без места в списках проведенные занятия считаются пропусками
    score = await score_aggregator.recompute(session, class_id, newcomer)
    assert (score.total_sessions, score.absent_sessions, score.attendance_score) == (2, 2, 6)


async def test_add_student_requires_student_role(
    session, make_class, other_teacher, teacher_actor
):
    teaching_class = await make_class()

    with pytest.raises(BusinessLogicError):
        await crud.add_student(session, teaching_class.id, other_teacher.id, teacher_actor)


async def test_add_students_batch(session, make_class, students, teacher_actor):
    ids = [s.id for s in students]
    teaching_class = await make_class(students=[ids[0]])

    result = await crud.add_students_batch(session, teaching_class.id, ids, teacher_actor)

    assert result.added == ids[1:]
    assert result.already_enrolled == [ids[0]]
    assert result.added_count == 2


async def test_remove_student_from_class(session, make_class, students, teacher_actor):
    ids = [s.id for s in students]
    teaching_class = await make_class(students=ids)

    result = await crud.remove_student(session, teaching_class.id, ids[0], teacher_actor)

    assert result.failed_steps == []
    refreshed = await crud.get_teaching_class_by_id(session, teaching_class.id)
    assert refreshed.students == ids[1:]

    with pytest.raises(StudentNotInClassError):
        await crud.remove_student(session, teaching_class.id, ids[0], teacher_actor)


async def test_delete_class(session, make_class, make_session, teacher_actor):
    teaching_class = await make_class()
    class_id = teaching_class.id
    await make_session(teaching_class, 1)

    result = await crud.delete_teaching_class(session, class_id, teacher_actor)

    assert result.failed_steps == []
    with pytest.raises(NotFoundError):
        await crud.get_teaching_class_by_id(session, class_id)
    assert await _session_count(session, class_id) == 0


async def test_regenerate_requires_schedule(session, make_class, teacher_actor):
    teaching_class = await make_class(schedule=[])

    with pytest.raises(BusinessLogicError):
        await crud.regenerate_sessions(session, teaching_class.id, teacher_actor)


async def test_regenerate_sessions(session, make_class, teacher_actor):
    teaching_class = await make_class()

    result = await crud.regenerate_sessions(session, teaching_class.id, teacher_actor)

    assert result.success is True
    assert result.generated == 5


async def test_check_conflicts_defaults_to_acting_teacher(
    session, make_class, teacher_actor, rooms
):
    await make_class()

    result = await crud.check_schedule_conflicts(
        session,
        ConflictCheckRequest(
            schedule=[
                {"day_of_week": 1, "start_time": "09:00", "end_time": "09:45", "room_id": rooms[1].id}
            ]
        ),
        teacher_actor,
    )

    assert [c.type for c in result.conflicts] == ["teacher"]
