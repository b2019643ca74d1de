import math
from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session
from app.core.dependencies import get_current_actor
from app.core.exceptions import PermissionDeniedError
from app.core.limits import limiter
from app.core.permissions import Actor
from app.classes.crud import attendance as attendance_crud
from app.classes.crud import scores as scores_crud
from app.classes.crud import teaching_classes as classes_crud
from app.classes.schemas.attendance import (
    AttendanceLogRead,
    AttendanceMark,
    AttendanceRecordResult,
    SchedulableSession,
)
from app.classes.schemas.schedule import ConflictCheckRequest, ConflictCheckResult
from app.classes.schemas.scores import (
    ClassAttendanceStats,
    MyAttendanceScore,
    RecomputeAllResult,
    ScoreUpdate,
    StudentAttendanceDetail,
    StudentScoreRead,
)
from app.classes.schemas.teaching_classes import (
    ClassMutationResult,
    SessionGenerationResult,
    StudentAdd,
    StudentBatchAdd,
    StudentBatchAddResult,
    TeachingClassCreate,
    TeachingClassFilters,
    TeachingClassListResponse,
    TeachingClassRead,
    TeachingClassUpdate,
)

router = APIRouter(prefix="/classes/teaching", tags=["Teaching Classes"])


# ===== TEACHING CLASS CRUD =====


@router.post(
    "/check-conflicts",
    response_model=ConflictCheckResult,
)
@limiter.limit("30/minute")
async def check_schedule_conflicts(
    request: Request,
    payload: ConflictCheckRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    """
    Check a candidate schedule against existing teaching classes.

    Reports teacher conflicts (same teacher, overlapping time) and room
    conflicts (same room, overlapping time). Touching boundaries count as
    overlap. The result is advisory and never blocks anything by itself.
    """
    return await classes_crud.check_schedule_conflicts(db, payload, actor)


@router.get("/", response_model=TeachingClassListResponse)
@limiter.limit("60/minute")
async def list_teaching_classes(
    request: Request,
    page: int = Query(1, ge=1, description="Page number"),
    size: int = Query(20, ge=1, le=100, description="Items per page"),
    semester_id: Optional[int] = Query(None, gt=0),
    teacher_id: Optional[int] = Query(None, gt=0),
    subject_id: Optional[int] = Query(None, gt=0),
    main_class_id: Optional[int] = Query(None, gt=0),
    search: Optional[str] = Query(None, max_length=100),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    """Paginated list of teaching classes with derived status"""
    filters = TeachingClassFilters(
        semester_id=semester_id,
        teacher_id=teacher_id,
        subject_id=subject_id,
        main_class_id=main_class_id,
        search=search,
    )
    skip = (page - 1) * size
    classes, total = await classes_crud.list_teaching_classes(db, skip, size, filters)

    return TeachingClassListResponse(
        classes=await classes_crud.serialize_teaching_classes(db, classes),
        total=total,
        page=page,
        size=size,
        pages=math.ceil(total / size) if total > 0 else 1,
        filters=filters.model_dump(exclude_none=True),
    )


@router.get("/teacher/{teacher_id}", response_model=List[TeachingClassRead])
@limiter.limit("60/minute")
async def list_classes_for_teacher(
    request: Request,
    teacher_id: int = Path(..., gt=0, description="Teacher ID"),
    semester_id: Optional[int] = Query(None, gt=0),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    if not actor.is_admin and actor.id != teacher_id:
        raise PermissionDeniedError(
            "list", f"classes of teacher {teacher_id}", "not your classes"
        )
    classes = await classes_crud.list_classes_for_teacher(db, teacher_id, semester_id)
    return await classes_crud.serialize_teaching_classes(db, classes)


@router.get("/student/{student_id}", response_model=List[TeachingClassRead])
@limiter.limit("60/minute")
async def list_classes_for_student(
    request: Request,
    student_id: int = Path(..., gt=0, description="Student ID"),
    semester_id: Optional[int] = Query(None, gt=0),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    if actor.is_student and actor.id != student_id:
        raise PermissionDeniedError(
            "list", f"classes of student {student_id}", "not your classes"
        )
    classes = await classes_crud.list_classes_for_student(db, student_id, semester_id)
    return await classes_crud.serialize_teaching_classes(db, classes)


@router.post("/", response_model=TeachingClassRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
async def create_teaching_class(
    request: Request,
    payload: TeachingClassCreate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    """
    Create a teaching class.

    Course dates must lie inside the semester and every schedule entry needs a
    room. Sessions are generated automatically when auto_generate_sessions is
    set and both the schedule and the course dates are present; a generation
    failure is logged and does not fail the request.
    """
    teaching_class = await classes_crud.create_teaching_class(db, payload, actor)
    return await classes_crud.serialize_teaching_class(db, teaching_class)


@router.get("/{class_id}", response_model=TeachingClassRead)
@limiter.limit("60/minute")
async def get_teaching_class(
    request: Request,
    class_id: int = Path(..., description="Teaching class ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    teaching_class = await classes_crud.get_teaching_class(db, class_id, actor)
    return await classes_crud.serialize_teaching_class(db, teaching_class)


@router.put("/{class_id}", response_model=TeachingClassRead)
@limiter.limit("10/minute")
async def update_teaching_class(
    request: Request,
    payload: TeachingClassUpdate,
    class_id: int = Path(..., description="Teaching class ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    """Partial update. Pending sessions are regenerated when the schedule changes."""
    teaching_class = await classes_crud.update_teaching_class(
        db, class_id, payload, actor
    )
    return await classes_crud.serialize_teaching_class(db, teaching_class)


@router.delete("/{class_id}", response_model=ClassMutationResult)
@limiter.limit("10/minute")
async def delete_teaching_class(
    request: Request,
    class_id: int = Path(..., description="Teaching class ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    """Delete the class with its sessions, attendance logs and scores"""
    return await classes_crud.delete_teaching_class(db, class_id, actor)


@router.post("/{class_id}/generate-sessions", response_model=SessionGenerationResult)
@limiter.limit("5/minute")
async def generate_sessions(
    request: Request,
    class_id: int = Path(..., description="Teaching class ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    """Regenerate pending sessions. Completed, in-progress and cancelled sessions are kept."""
    return await classes_crud.regenerate_sessions(db, class_id, actor)


# ===== ROSTER =====


@router.post("/{class_id}/students", response_model=TeachingClassRead)
@limiter.limit("30/minute")
async def add_student(
    request: Request,
    payload: StudentAdd,
    class_id: int = Path(..., description="Teaching class ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    teaching_class = await classes_crud.add_student(
        db, class_id, payload.student_id, actor
    )
    return await classes_crud.serialize_teaching_class(db, teaching_class)


@router.post("/{class_id}/students/batch", response_model=StudentBatchAddResult)
@limiter.limit("10/minute")
async def add_students_batch(
    request: Request,
    payload: StudentBatchAdd,
    class_id: int = Path(..., description="Teaching class ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    return await classes_crud.add_students_batch(
        db, class_id, payload.student_ids, actor
    )


@router.delete("/{class_id}/students/{student_id}", response_model=ClassMutationResult)
@limiter.limit("30/minute")
async def remove_student(
    request: Request,
    class_id: int = Path(..., description="Teaching class ID"),
    student_id: int = Path(..., description="Student ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    """Remove a student together with their score, logs and session membership"""
    return await classes_crud.remove_student(db, class_id, student_id, actor)


# ===== ATTENDANCE & SCORES =====


@router.put(
    "/{class_id}/sessions/{session_id}/attendance/{student_id}",
    response_model=AttendanceRecordResult,
)
@limiter.limit("120/minute")
async def update_student_attendance(
    request: Request,
    payload: AttendanceMark,
    class_id: int = Path(..., description="Teaching class ID"),
    session_id: int = Path(..., description="Attendance session ID"),
    student_id: int = Path(..., description="Student ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    """
    Record a student's attendance for one session.

    The attendance log is saved even if the following score recalculation
    fails; in that case `score` is null.
    """
    log, score = await attendance_crud.mark_attendance(
        db, class_id, session_id, student_id, payload, actor
    )
    return AttendanceRecordResult(
        log=AttendanceLogRead.model_validate(log),
        score=StudentScoreRead.model_validate(score) if score else None,
    )


@router.get("/{class_id}/attendance-stats", response_model=ClassAttendanceStats)
@limiter.limit("30/minute")
async def get_class_attendance_stats(
    request: Request,
    class_id: int = Path(..., description="Teaching class ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    return await scores_crud.get_class_attendance_stats(db, class_id, actor)


@router.get(
    "/{class_id}/students/{student_id}/attendance",
    response_model=StudentAttendanceDetail,
)
@limiter.limit("60/minute")
async def get_student_attendance_detail(
    request: Request,
    class_id: int = Path(..., description="Teaching class ID"),
    student_id: int = Path(..., description="Student ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    return await scores_crud.get_student_attendance_detail(
        db, class_id, student_id, actor
    )


@router.put("/{class_id}/students/{student_id}/score", response_model=StudentScoreRead)
@limiter.limit("30/minute")
async def update_student_score(
    request: Request,
    payload: ScoreUpdate,
    class_id: int = Path(..., description="Teaching class ID"),
    student_id: int = Path(..., description="Student ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    return await scores_crud.update_student_score(
        db, class_id, student_id, payload, actor
    )


@router.post(
    "/{class_id}/students/{student_id}/recalculate-attendance",
    response_model=StudentScoreRead,
)
@limiter.limit("30/minute")
async def recalculate_student_attendance(
    request: Request,
    class_id: int = Path(..., description="Teaching class ID"),
    student_id: int = Path(..., description="Student ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    return await scores_crud.recompute_student_score(db, class_id, student_id, actor)


@router.post("/{class_id}/recalculate-all-attendance", response_model=RecomputeAllResult)
@limiter.limit("10/minute")
async def recalculate_all_attendance(
    request: Request,
    class_id: int = Path(..., description="Teaching class ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    """Recalculate every student's score; returns one entry per student"""
    return await scores_crud.recompute_class_scores(db, class_id, actor)


@router.get("/{class_id}/my-attendance-score", response_model=MyAttendanceScore)
@limiter.limit("60/minute")
async def get_my_attendance_score(
    request: Request,
    class_id: int = Path(..., description="Teaching class ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    return await scores_crud.get_my_attendance_score(db, class_id, actor)


@router.get("/{class_id}/schedulable-sessions", response_model=List[SchedulableSession])
@limiter.limit("60/minute")
async def get_schedulable_sessions(
    request: Request,
    class_id: int = Path(..., description="Teaching class ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    """Upcoming (pending) sessions a student can request leave for"""
    sessions = await attendance_crud.get_schedulable_sessions_for_student(
        db, class_id, actor
    )
    return [
        SchedulableSession(
            session_id=s.id,
            session_number=s.session_number,
            date=s.date,
            start_time=s.start_time,
            end_time=s.end_time,
            room_id=s.room_id,
        )
        for s in sessions
    ]
