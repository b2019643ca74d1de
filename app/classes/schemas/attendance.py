from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.classes.models.attendance import AttendanceStatus, SessionStatus
from app.classes.schemas.scores import StudentScoreRead


class AttendanceSessionRead(BaseModel):
    id: int
    teaching_class_id: int
    session_number: int
    date: date
    room_id: Optional[int] = None
    start_time: datetime
    end_time: datetime
    status: SessionStatus
    students_present: List[int] = Field(default_factory=list)
    students_absent: List[int] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class SessionStatusUpdate(BaseModel):
    status: SessionStatus


class AttendanceMark(BaseModel):
    """Отметка посещаемости студента на занятии"""

    status: AttendanceStatus
    note: Optional[str] = Field(None, max_length=1000)

    model_config = ConfigDict(str_strip_whitespace=True)


class AttendanceLogRead(BaseModel):
    id: int
    session_id: int
    student_id: int
    status: AttendanceStatus
    note: Optional[str] = None
    timestamp: datetime

    model_config = ConfigDict(from_attributes=True)


class AttendanceRecordResult(BaseModel):
    log: AttendanceLogRead
    # None, если пересчет баллов не удался (лог все равно сохранен)
    score: Optional[StudentScoreRead] = None


class SchedulableSession(BaseModel):
    """Предстоящее занятие, на которое студент может подать заявку на отсутствие"""

    session_id: int
    session_number: int
    date: date
    start_time: datetime
    end_time: datetime
    room_id: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)
