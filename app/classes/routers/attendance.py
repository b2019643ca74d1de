from typing import List

from fastapi import APIRouter, Depends, Path, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session
from app.core.dependencies import get_current_actor
from app.core.limits import limiter
from app.core.permissions import Actor
from app.classes.crud import attendance as attendance_crud
from app.classes.schemas.attendance import (
    AttendanceLogRead,
    AttendanceSessionRead,
    SessionStatusUpdate,
)

router = APIRouter(prefix="/attendance", tags=["Attendance"])


@router.get(
    "/teaching-class/{class_id}/sessions", response_model=List[AttendanceSessionRead]
)
@limiter.limit("60/minute")
async def list_class_sessions(
    request: Request,
    class_id: int = Path(..., description="Teaching class ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    """Sessions of a teaching class ordered by session number"""
    return await attendance_crud.list_class_sessions(db, class_id, actor)


@router.get("/sessions/{session_id}", response_model=AttendanceSessionRead)
@limiter.limit("60/minute")
async def get_session_by_id(
    request: Request,
    session_id: int = Path(..., description="Attendance session ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    return await attendance_crud.get_session(db, session_id, actor)


@router.put("/sessions/{session_id}/status", response_model=AttendanceSessionRead)
@limiter.limit("30/minute")
async def update_session_status(
    request: Request,
    payload: SessionStatusUpdate,
    session_id: int = Path(..., description="Attendance session ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    """
    Change session status.

    Moving a session into or out of `completed` triggers a score
    recalculation for the whole class.
    """
    return await attendance_crud.update_session_status(
        db, session_id, payload.status, actor
    )


@router.get("/logs/{session_id}", response_model=List[AttendanceLogRead])
@limiter.limit("60/minute")
async def get_session_logs(
    request: Request,
    session_id: int = Path(..., description="Attendance session ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    return await attendance_crud.get_session_logs(db, session_id, actor)


@router.get("/logs/{session_id}/student/{student_id}", response_model=AttendanceLogRead)
@limiter.limit("60/minute")
async def get_student_log(
    request: Request,
    session_id: int = Path(..., description="Attendance session ID"),
    student_id: int = Path(..., description="Student ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    return await attendance_crud.get_student_log(db, session_id, student_id, actor)


@router.delete("/logs/{log_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("30/minute")
async def delete_attendance_log(
    request: Request,
    log_id: int = Path(..., description="Attendance log ID"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_session),
):
    """Delete a mistaken attendance log; the student is marked absent again"""
    await attendance_crud.delete_attendance_log(db, log_id, actor)
