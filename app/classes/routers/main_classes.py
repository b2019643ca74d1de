from typing import Optional

from fastapi import APIRouter, Body, Depends, Path, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session
from app.core.dependencies import get_current_actor
from app.core.limits import limiter
from app.core.permissions import Actor
from app.classes.crud import main_classes as main_classes_crud
from app.classes.schemas.main_classes import (
    MainClassStudentAction,
    PendingStudent,
    PendingStudentsResponse,
    StudentRejection,
)

router = APIRouter(prefix="/classes/main", tags=["Main Classes"])


@router.get("/{main_class_id}/pending-students", response_model=PendingStudentsResponse)
@limiter.limit("30/minute")
async def get_pending_students(
    request: Request,
    main_class_id: int = Path(..., description="Main class ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    """Students waiting for the advisor's approval"""
    students = await main_classes_crud.get_pending_students(db, main_class_id, actor)
    return PendingStudentsResponse(
        main_class_id=main_class_id,
        students=[PendingStudent.model_validate(s) for s in students],
        total=len(students),
    )


@router.put(
    "/{main_class_id}/approve-student/{student_id}",
    response_model=MainClassStudentAction,
)
@limiter.limit("30/minute")
async def approve_student(
    request: Request,
    main_class_id: int = Path(..., description="Main class ID"),
    student_id: int = Path(..., description="Student ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    return await main_classes_crud.approve_student(db, main_class_id, student_id, actor)


@router.put(
    "/{main_class_id}/reject-student/{student_id}",
    response_model=MainClassStudentAction,
)
@limiter.limit("30/minute")
async def reject_student(
    request: Request,
    main_class_id: int = Path(..., description="Main class ID"),
    student_id: int = Path(..., description="Student ID"),
    payload: Optional[StudentRejection] = Body(None),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    return await main_classes_crud.reject_student(
        db, main_class_id, student_id, actor, payload.reason if payload else None
    )


@router.delete(
    "/{main_class_id}/students/{student_id}", response_model=MainClassStudentAction
)
@limiter.limit("30/minute")
async def remove_student_from_main_class(
    request: Request,
    main_class_id: int = Path(..., description="Main class ID"),
    student_id: int = Path(..., description="Student ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    return await main_classes_crud.remove_student_from_main_class(
        db, main_class_id, student_id, actor
    )
