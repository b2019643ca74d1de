import pytest
from sqlalchemy.future import select

from app.core.exceptions import BusinessLogicError, NotFoundError, PermissionDeniedError
from app.core.permissions import Actor, ActorRole
from app.classes.crud import main_classes as crud
from app.classes.models import Notification, User, UserRole, UserStatus


async def _pending_student(session, make_user, main_class):
    student = await make_user(UserRole.student, UserStatus.pending)
    main_class.pending_students = list(main_class.pending_students) + [student.id]
    await session.commit()
    return student


async def _user(session, user_id):
    result = await session.execute(
        select(User).where(User.id == user_id).execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def test_pending_students_listing(session, make_user, main_class, teacher_actor):
    student = await _pending_student(session, make_user, main_class)

    pending = await crud.get_pending_students(session, main_class.id, teacher_actor)

    assert [user.id for user in pending] == [student.id]


async def test_approve_student(session, make_user, main_class, teacher_actor):
    student = await _pending_student(session, make_user, main_class)
    student_id = student.id

    result = await crud.approve_student(session, main_class.id, student_id, teacher_actor)

    assert result.action == "approved"
    assert main_class.students == [student_id]
    assert main_class.pending_students == []
    approved = await _user(session, student_id)
    assert approved.status == UserStatus.active.value
    assert approved.main_class_id == main_class.id

    notification = await session.execute(
        select(Notification).where(Notification.receiver_id == student_id)
    )
    stored = notification.scalar_one()
    assert stored.type == "MAIN_CLASS_APPROVED"
    assert stored.data["status"] == "approved"


async def test_approve_twice_is_rejected(session, make_user, main_class, teacher_actor):
    student = await _pending_student(session, make_user, main_class)
    main_class_id, student_id = main_class.id, student.id
    await crud.approve_student(session, main_class_id, student_id, teacher_actor)

    with pytest.raises(BusinessLogicError):
        await crud.approve_student(session, main_class_id, student_id, teacher_actor)


async def test_approve_requires_pending_request(session, make_user, main_class, teacher_actor):
    student = await make_user()

    with pytest.raises(BusinessLogicError):
        await crud.approve_student(session, main_class.id, student.id, teacher_actor)


async def test_reject_student_with_reason(session, make_user, main_class, teacher_actor):
    student = await _pending_student(session, make_user, main_class)
    student_id = student.id

    result = await crud.reject_student(
        session, main_class.id, student_id, teacher_actor, reason="wrong group"
    )

    assert result.action == "rejected"
    assert main_class.pending_students == []
    assert main_class.students == []
    rejected = await _user(session, student_id)
    assert rejected.status == UserStatus.rejected.value

    notification = await session.execute(
        select(Notification.content).where(Notification.receiver_id == student_id)
    )
    assert notification.scalar_one().endswith("Reason: wrong group")


async def test_remove_student_from_main_class(session, make_user, main_class, teacher_actor):
    student = await _pending_student(session, make_user, main_class)
    main_class_id, student_id = main_class.id, student.id
    await crud.approve_student(session, main_class_id, student_id, teacher_actor)

    result = await crud.remove_student_from_main_class(
        session, main_class_id, student_id, teacher_actor
    )

    assert result.action == "removed"
    assert main_class.students == []
    removed = await _user(session, student_id)
    assert removed.main_class_id is None


async def test_only_advisor_or_admin_manages(
    session, make_user, main_class, other_teacher, admin_actor
):
    student = await _pending_student(session, make_user, main_class)
    main_class_id, student_id = main_class.id, student.id
    stranger = Actor(id=other_teacher.id, role=ActorRole.teacher)

    with pytest.raises(PermissionDeniedError):
        await crud.approve_student(session, main_class_id, student_id, stranger)

    result = await crud.approve_student(session, main_class_id, student_id, admin_actor)
    assert result.action == "approved"


async def test_unknown_main_class(session, teacher_actor):
    with pytest.raises(NotFoundError):
        await crud.get_pending_students(session, 777, teacher_actor)
