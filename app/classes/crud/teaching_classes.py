from typing import List, Optional, Tuple

from sqlalchemy import and_, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.core import clock
from app.core.database import db_operation, with_db_transaction
from app.core.exceptions import (
    BusinessLogicError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from app.core.logging_utils import log_business_event
from app.core.permissions import (
    Actor,
    ActorRole,
    can_create_class,
    can_manage,
    ensure_can_manage,
    ensure_role,
    is_enrolled,
)
from app.core.validations import validate_id
from app.classes.crud.users import get_user_with_role
from app.classes.models.semesters import Semester
from app.classes.models.subjects import Subject
from app.classes.models.teaching_classes import TeachingClass
from app.classes.models.users import UserRole
from app.classes.schemas.schedule import ConflictCheckRequest, ConflictCheckResult
from app.classes.schemas.teaching_classes import (
    ClassMutationResult,
    SessionGenerationResult,
    StudentBatchAddResult,
    TeachingClassCreate,
    TeachingClassFilters,
    TeachingClassRead,
    TeachingClassUpdate,
)
from app.classes.services import class_lifecycle
from app.classes.services.class_status import derive_class_status
from app.classes.services.notification_service import (
    CLASS_ENROLLMENT,
    SCHEDULE_UPDATE,
    notify,
    notify_many,
)
from app.classes.services.schedule_conflicts import check_conflicts
from app.classes.services.score_aggregator import recompute_all_safely
from app.classes.services.session_generator import generate_sessions

# Поля, изменение которых меняет расписание занятий
SCHEDULE_FIELDS = frozenset(
    {"schedule", "course_start_date", "course_end_date", "total_sessions"}
)

# NOT NULL колонки: явный null в частичном обновлении игнорируется
REQUIRED_FIELDS = frozenset(
    {
        "class_name",
        "semester_id",
        "total_sessions",
        "max_absent_allowed",
        "auto_generate_sessions",
    }
)


@db_operation
async def get_teaching_class_by_id(
    session: AsyncSession, class_id: int
) -> TeachingClass:
    """Get teaching class by ID"""
    validate_id(class_id, "Class ID")

    result = await session.execute(
        select(TeachingClass).where(TeachingClass.id == class_id)
    )
    teaching_class = result.scalar_one_or_none()

    if not teaching_class:
        raise NotFoundError("Teaching class", str(class_id))

    return teaching_class


def ensure_can_view(actor: Actor, teaching_class: TeachingClass) -> None:
    """Смотреть класс могут управляющие им и записанные студенты"""
    if can_manage(actor, teaching_class) or actor.is_teacher:
        return
    if actor.is_student and is_enrolled(actor, teaching_class):
        return
    raise PermissionDeniedError(
        "view", f"teaching class {teaching_class.id}", "not enrolled in this class"
    )


async def _ensure_references(session: AsyncSession, teaching_class) -> None:
    if teaching_class.subject_id is not None:
        result = await session.execute(
            select(Subject.id).where(Subject.id == teaching_class.subject_id)
        )
        if result.scalar_one_or_none() is None:
            raise NotFoundError("Subject", str(teaching_class.subject_id))

    if teaching_class.teacher_id is not None:
        await get_user_with_role(session, teaching_class.teacher_id, UserRole.teacher)


async def serialize_teaching_classes(
    session: AsyncSession, classes: List[TeachingClass]
) -> List[TeachingClassRead]:
    """TeachingClassRead с вычисленным статусом по окну семестра"""
    semester_ids = {tc.semester_id for tc in classes}
    semesters = {}
    if semester_ids:
        result = await session.execute(
            select(Semester).where(Semester.id.in_(semester_ids))
        )
        semesters = {s.id: s for s in result.scalars().all()}

    today = clock.today()
    reads = []
    for tc in classes:
        semester = semesters.get(tc.semester_id)
        status, is_active = derive_class_status(
            semester.start_date if semester else None,
            semester.end_date if semester else None,
            today,
        )
        read = TeachingClassRead.model_validate(tc)
        read.status = status
        read.is_active = is_active
        reads.append(read)

    return reads


async def serialize_teaching_class(
    session: AsyncSession, teaching_class: TeachingClass
) -> TeachingClassRead:
    reads = await serialize_teaching_classes(session, [teaching_class])
    return reads[0]


async def create_teaching_class(
    session: AsyncSession, data: TeachingClassCreate, actor: Actor
) -> TeachingClass:
    """Create a teaching class and generate its sessions (best-effort)"""
    ensure_role(actor, ActorRole.admin, ActorRole.teacher)

    teacher_id = data.teacher_id
    if teacher_id is None and actor.is_teacher:
        teacher_id = actor.id

    if not can_create_class(actor, teacher_id):
        raise PermissionDeniedError(
            "create", "teaching class", "teachers can only create their own classes"
        )

    async def _create_operation(session: AsyncSession):
        semester = await class_lifecycle.get_semester(session, data.semester_id)

        for student_id in data.students:
            await get_user_with_role(session, student_id, UserRole.student)

        teaching_class = TeachingClass(
            class_name=data.class_name,
            class_code=data.class_code,
            subject_id=data.subject_id,
            teacher_id=teacher_id,
            main_class_id=data.main_class_id,
            semester_id=data.semester_id,
            total_sessions=data.total_sessions,
            max_absent_allowed=data.max_absent_allowed,
            schedule=[entry.model_dump(mode="json") for entry in data.schedule],
            students=list(data.students),
            course_start_date=data.course_start_date,
            course_end_date=data.course_end_date,
            auto_generate_sessions=data.auto_generate_sessions,
        )

        class_lifecycle.validate_course_window(teaching_class, semester)
        await _ensure_references(session, teaching_class)

        session.add(teaching_class)
        await session.flush()

        if class_lifecycle.should_generate_sessions(teaching_class):
            await generate_sessions(session, teaching_class)

        return teaching_class

    teaching_class = await with_db_transaction(session, _create_operation)

    log_business_event(
        "teaching_class_created",
        "teaching_class",
        teaching_class.id,
        {"teacher_id": teacher_id, "actor_id": actor.id},
    )
    return teaching_class


async def update_teaching_class(
    session: AsyncSession, class_id: int, data: TeachingClassUpdate, actor: Actor
) -> TeachingClass:
    """Partial update; re-validates dates and regenerates pending sessions"""

    async def _update_operation(session: AsyncSession):
        teaching_class = await get_teaching_class_by_id(session, class_id)
        ensure_can_manage(actor, teaching_class, "update")

        update_data = {
            field: value
            for field, value in data.model_dump(exclude_unset=True).items()
            if value is not None or field not in REQUIRED_FIELDS
        }

        if (
            "teacher_id" in update_data
            and update_data["teacher_id"] != teaching_class.teacher_id
            and not actor.is_admin
        ):
            raise PermissionDeniedError(
                "reassign teacher of",
                f"teaching class {class_id}",
                "only an admin can change the teacher",
            )

        if "schedule" in update_data:
            if update_data["schedule"] is None:
                update_data["schedule"] = []
            else:
                update_data["schedule"] = [
                    entry.model_dump(mode="json") for entry in data.schedule
                ]

        for field, value in update_data.items():
            setattr(teaching_class, field, value)

        await _ensure_references(session, teaching_class)
        await session.flush()

        schedule_changed = bool(SCHEDULE_FIELDS & update_data.keys())
        if schedule_changed or "semester_id" in update_data:
            await class_lifecycle.apply_schedule_change(session, teaching_class)

        if "max_absent_allowed" in update_data:
            # Порог хранится в кэше баллов: пересчитываем is_failed_due_to_absent
            await recompute_all_safely(
                session,
                class_id,
                "update_teaching_class",
                {"max_absent_allowed": teaching_class.max_absent_allowed},
            )

        if schedule_changed:
            await notify_many(
                session,
                SCHEDULE_UPDATE,
                list(teaching_class.students or []),
                f"The schedule of class {teaching_class.class_name} has been updated",
                link=f"/classes/teaching/{class_id}",
                data={"class_id": class_id},
                sender_id=actor.id,
            )

        return teaching_class, sorted(update_data.keys())

    teaching_class, updated_fields = await with_db_transaction(
        session, _update_operation
    )

    log_business_event(
        "teaching_class_updated",
        "teaching_class",
        class_id,
        {"fields": updated_fields, "actor_id": actor.id},
    )
    return teaching_class


async def get_teaching_class(
    session: AsyncSession, class_id: int, actor: Actor
) -> TeachingClass:
    teaching_class = await get_teaching_class_by_id(session, class_id)
    ensure_can_view(actor, teaching_class)
    return teaching_class


@db_operation
async def list_teaching_classes(
    session: AsyncSession,
    skip: int = 0,
    limit: int = 20,
    filters: Optional[TeachingClassFilters] = None,
) -> Tuple[List[TeachingClass], int]:
    """Get paginated list of teaching classes with filters"""
    if skip < 0:
        raise ValidationError("Skip parameter must be >= 0")

    if limit <= 0 or limit > 100:
        raise ValidationError("Limit must be between 1 and 100")

    conditions = []
    if filters:
        if filters.semester_id:
            conditions.append(TeachingClass.semester_id == filters.semester_id)
        if filters.teacher_id:
            conditions.append(TeachingClass.teacher_id == filters.teacher_id)
        if filters.subject_id:
            conditions.append(TeachingClass.subject_id == filters.subject_id)
        if filters.main_class_id:
            conditions.append(TeachingClass.main_class_id == filters.main_class_id)
        if filters.search:
            search = f"%{filters.search.strip()}%"
            conditions.append(
                or_(
                    TeachingClass.class_name.ilike(search),
                    TeachingClass.class_code.ilike(search),
                )
            )

    base_query = select(TeachingClass)
    count_query = select(func.count(TeachingClass.id))
    if conditions:
        base_query = base_query.where(and_(*conditions))
        count_query = count_query.where(and_(*conditions))

    total_result = await session.execute(count_query)
    total = total_result.scalar()

    result = await session.execute(
        base_query.order_by(TeachingClass.created_at.desc(), TeachingClass.id.desc())
        .offset(skip)
        .limit(limit)
    )
    return result.scalars().all(), total


@db_operation
async def list_classes_for_teacher(
    session: AsyncSession, teacher_id: int, semester_id: Optional[int] = None
) -> List[TeachingClass]:
    validate_id(teacher_id, "Teacher ID")

    query = select(TeachingClass).where(TeachingClass.teacher_id == teacher_id)
    if semester_id:
        query = query.where(TeachingClass.semester_id == semester_id)

    result = await session.execute(query.order_by(TeachingClass.class_name))
    return result.scalars().all()


@db_operation
async def list_classes_for_student(
    session: AsyncSession, student_id: int, semester_id: Optional[int] = None
) -> List[TeachingClass]:
    validate_id(student_id, "Student ID")

    query = select(TeachingClass)
    if semester_id:
        query = query.where(TeachingClass.semester_id == semester_id)

    result = await session.execute(query.order_by(TeachingClass.class_name))
    # Состав хранится JSON-списком, фильтруем на стороне приложения
    return [tc for tc in result.scalars().all() if tc.has_student(student_id)]


async def regenerate_sessions(
    session: AsyncSession, class_id: int, actor: Actor
) -> SessionGenerationResult:
    async def _regenerate_operation(session: AsyncSession):
        teaching_class = await get_teaching_class_by_id(session, class_id)
        ensure_can_manage(actor, teaching_class, "generate sessions for")

        if not teaching_class.schedule:
            raise BusinessLogicError("Teaching class has no schedule")
        if not teaching_class.course_start_date or not teaching_class.course_end_date:
            raise BusinessLogicError("Teaching class has no course date range")

        return await generate_sessions(session, teaching_class)

    return await with_db_transaction(session, _regenerate_operation)


async def add_student(
    session: AsyncSession, class_id: int, student_id: int, actor: Actor
) -> TeachingClass:
    """Записать студента в класс (уже сгенерированные занятия не меняются)"""
    validate_id(student_id, "Student ID")

    async def _add_operation(session: AsyncSession):
        teaching_class = await get_teaching_class_by_id(session, class_id)
        ensure_can_manage(actor, teaching_class, "add students to")

        if teaching_class.has_student(student_id):
            raise BusinessLogicError(
                "Student is already enrolled in this class",
                {"class_id": class_id, "student_id": student_id},
            )

        await get_user_with_role(session, student_id, UserRole.student)

        teaching_class.students = list(teaching_class.students or []) + [student_id]
        await session.flush()

        await notify(
            session,
            CLASS_ENROLLMENT,
            student_id,
            f"You have been added to class {teaching_class.class_name}",
            link=f"/classes/teaching/{class_id}",
            data={"class_id": class_id},
            sender_id=actor.id,
        )
        return teaching_class

    return await with_db_transaction(session, _add_operation)


async def add_students_batch(
    session: AsyncSession, class_id: int, student_ids: List[int], actor: Actor
) -> StudentBatchAddResult:
    async def _batch_operation(session: AsyncSession):
        teaching_class = await get_teaching_class_by_id(session, class_id)
        ensure_can_manage(actor, teaching_class, "add students to")

        current = list(teaching_class.students or [])
        new_ids = [sid for sid in student_ids if sid not in current]
        already_enrolled = [sid for sid in student_ids if sid in current]

        for student_id in new_ids:
            await get_user_with_role(session, student_id, UserRole.student)

        if new_ids:
            teaching_class.students = current + new_ids
            await session.flush()

        return StudentBatchAddResult(
            class_id=class_id,
            added_count=len(new_ids),
            added=new_ids,
            already_enrolled=already_enrolled,
        )

    return await with_db_transaction(session, _batch_operation)


async def remove_student(
    session: AsyncSession, class_id: int, student_id: int, actor: Actor
) -> ClassMutationResult:
    validate_id(student_id, "Student ID")

    async def _remove_operation(session: AsyncSession):
        teaching_class = await get_teaching_class_by_id(session, class_id)
        ensure_can_manage(actor, teaching_class, "remove students from")
        return await class_lifecycle.remove_student(session, teaching_class, student_id)

    failed_steps = await with_db_transaction(session, _remove_operation)

    log_business_event(
        "student_removed",
        "teaching_class",
        class_id,
        {"student_id": student_id, "failed_steps": failed_steps, "actor_id": actor.id},
    )
    return ClassMutationResult(
        class_id=class_id,
        student_id=student_id,
        message="Student removed from class",
        failed_steps=failed_steps,
    )


async def delete_teaching_class(
    session: AsyncSession, class_id: int, actor: Actor
) -> ClassMutationResult:
    async def _delete_operation(session: AsyncSession):
        teaching_class = await get_teaching_class_by_id(session, class_id)
        ensure_can_manage(actor, teaching_class, "delete")
        return await class_lifecycle.delete_teaching_class(session, teaching_class)

    failed_steps = await with_db_transaction(session, _delete_operation)

    log_business_event(
        "teaching_class_deleted",
        "teaching_class",
        class_id,
        {"failed_steps": failed_steps, "actor_id": actor.id},
    )
    return ClassMutationResult(
        class_id=class_id,
        message="Teaching class deleted",
        failed_steps=failed_steps,
    )


async def check_schedule_conflicts(
    session: AsyncSession, request: ConflictCheckRequest, actor: Actor
) -> ConflictCheckResult:
    """Teachers check their own schedule; admins may check any teacher"""
    ensure_role(actor, ActorRole.admin, ActorRole.teacher)

    teacher_id = request.teacher_id
    if teacher_id is None and actor.is_teacher:
        teacher_id = actor.id

    return await check_conflicts(
        session, teacher_id, request.schedule, request.exclude_class_id
    )
