from typing import List

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.core.database import db_operation, with_db_transaction
from app.core.exceptions import BusinessLogicError, NotFoundError
from app.core.logging_utils import log_business_event
from app.core.permissions import Actor, ensure_can_manage_main_class
from app.core.validations import validate_id
from app.classes.crud.users import get_user_by_id
from app.classes.models.main_classes import MainClass
from app.classes.models.users import User, UserStatus
from app.classes.schemas.main_classes import MainClassStudentAction
from app.classes.services.notification_service import (
    MAIN_CLASS_APPROVED,
    MAIN_CLASS_REJECTED,
    MAIN_CLASS_REMOVED,
    notify,
)


@db_operation
async def get_main_class_by_id(session: AsyncSession, main_class_id: int) -> MainClass:
    validate_id(main_class_id, "Main class ID")

    result = await session.execute(
        select(MainClass).where(MainClass.id == main_class_id)
    )
    main_class = result.scalar_one_or_none()
    if not main_class:
        raise NotFoundError("Main class", str(main_class_id))
    return main_class


@db_operation
async def get_pending_students(
    session: AsyncSession, main_class_id: int, actor: Actor
) -> List[User]:
    main_class = await get_main_class_by_id(session, main_class_id)
    ensure_can_manage_main_class(actor, main_class, "view pending students of")

    pending_ids = list(main_class.pending_students or [])
    if not pending_ids:
        return []

    result = await session.execute(
        select(User).where(User.id.in_(pending_ids)).order_by(User.full_name)
    )
    return result.scalars().all()


async def approve_student(
    session: AsyncSession, main_class_id: int, student_id: int, actor: Actor
) -> MainClassStudentAction:
    """Перевод студента из pending_students в students с активацией аккаунта"""
    validate_id(student_id, "Student ID")

    async def _approve_operation(session: AsyncSession):
        main_class = await get_main_class_by_id(session, main_class_id)
        ensure_can_manage_main_class(actor, main_class, "approve students of")

        student = await get_user_by_id(session, student_id)

        if student_id in (main_class.students or []):
            raise BusinessLogicError(
                "Student has already been approved for this class",
                {"main_class_id": main_class_id, "student_id": student_id},
            )
        if student_id not in (main_class.pending_students or []):
            raise BusinessLogicError(
                "Student is not waiting for approval in this class",
                {"main_class_id": main_class_id, "student_id": student_id},
            )

        student.status = UserStatus.active.value
        student.main_class_id = main_class_id

        main_class.students = list(main_class.students or []) + [student_id]
        main_class.pending_students = [
            sid for sid in main_class.pending_students if sid != student_id
        ]
        await session.flush()

        await notify(
            session,
            MAIN_CLASS_APPROVED,
            student_id,
            f"Your request to join class {main_class.name} ({main_class.class_code}) "
            f"has been approved",
            link=f"/student/classes/main/{main_class_id}",
            data={"main_class_id": main_class_id, "status": "approved"},
            sender_id=actor.id,
        )

    await with_db_transaction(session, _approve_operation)

    log_business_event(
        "student_approved",
        "main_class",
        main_class_id,
        {"student_id": student_id, "actor_id": actor.id},
    )
    return MainClassStudentAction(
        main_class_id=main_class_id,
        student_id=student_id,
        action="approved",
        message="Student approved",
    )


async def reject_student(
    session: AsyncSession,
    main_class_id: int,
    student_id: int,
    actor: Actor,
    reason: str = None,
) -> MainClassStudentAction:
    validate_id(student_id, "Student ID")

    async def _reject_operation(session: AsyncSession):
        main_class = await get_main_class_by_id(session, main_class_id)
        ensure_can_manage_main_class(actor, main_class, "reject students of")

        student = await get_user_by_id(session, student_id)
        if student_id not in (main_class.pending_students or []):
            raise BusinessLogicError(
                "Student is not waiting for approval in this class",
                {"main_class_id": main_class_id, "student_id": student_id},
            )

        student.status = UserStatus.rejected.value
        main_class.pending_students = [
            sid for sid in main_class.pending_students if sid != student_id
        ]
        await session.flush()

        content = (
            f"Your request to join class {main_class.name} ({main_class.class_code}) "
            f"has been rejected."
        )
        if reason:
            content += f" Reason: {reason}"

        await notify(
            session,
            MAIN_CLASS_REJECTED,
            student_id,
            content,
            data={"main_class_id": main_class_id, "status": "rejected"},
            sender_id=actor.id,
        )

    await with_db_transaction(session, _reject_operation)

    log_business_event(
        "student_rejected",
        "main_class",
        main_class_id,
        {"student_id": student_id, "actor_id": actor.id, "reason": reason},
    )
    return MainClassStudentAction(
        main_class_id=main_class_id,
        student_id=student_id,
        action="rejected",
        message="Student rejected",
    )


async def remove_student_from_main_class(
    session: AsyncSession, main_class_id: int, student_id: int, actor: Actor
) -> MainClassStudentAction:
    validate_id(student_id, "Student ID")

    async def _remove_operation(session: AsyncSession):
        main_class = await get_main_class_by_id(session, main_class_id)
        ensure_can_manage_main_class(actor, main_class, "remove students from")

        if student_id not in (main_class.students or []):
            raise BusinessLogicError(
                "Student is not in this main class",
                {"main_class_id": main_class_id, "student_id": student_id},
            )

        main_class.students = [sid for sid in main_class.students if sid != student_id]

        student = await session.get(User, student_id)
        if student is not None and student.main_class_id == main_class_id:
            student.main_class_id = None
        await session.flush()

        await notify(
            session,
            MAIN_CLASS_REMOVED,
            student_id,
            f"You have been removed from class {main_class.name}",
            data={"main_class_id": main_class_id},
            sender_id=actor.id,
        )

    await with_db_transaction(session, _remove_operation)

    return MainClassStudentAction(
        main_class_id=main_class_id,
        student_id=student_id,
        action="removed",
        message="Student removed from main class",
    )
