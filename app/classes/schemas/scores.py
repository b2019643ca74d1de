from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.core.exceptions import ValidationError


class StudentScoreRead(BaseModel):
    id: int
    teaching_class_id: int
    student_id: int
    total_sessions: int
    absent_sessions: int
    attendance_score: float
    max_absent_allowed: int
    is_failed_due_to_absent: bool
    final_score: Optional[float] = None
    note: Optional[str] = None
    last_updated: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ScoreUpdate(BaseModel):
    """Ручная корректировка баллов преподавателем"""

    final_score: Optional[float] = Field(None, ge=0, le=10)
    attendance_score: Optional[float] = Field(None, ge=0, le=10)
    note: Optional[str] = Field(None, max_length=1000)

    @model_validator(mode="after")
    def validate_not_empty(self):
        if (
            self.final_score is None
            and self.attendance_score is None
            and self.note is None
        ):
            raise ValidationError("At least one score field must be provided")
        return self


class RecomputeEntry(BaseModel):
    student_id: int
    success: bool
    score: Optional[StudentScoreRead] = None
    error: Optional[str] = None


class RecomputeAllResult(BaseModel):
    class_id: int
    results: List[RecomputeEntry]
    success_count: int
    error_count: int


# === Статистика ===
class SessionStats(BaseModel):
    session_id: int
    session_number: int
    date: date
    status: str
    present_count: int
    absent_count: int
    attendance_rate: float


class StudentStats(BaseModel):
    student_id: int
    full_name: Optional[str] = None
    student_code: Optional[str] = None
    # session_id -> статус отметки (без отметки - "absent")
    sessions: Dict[int, str]
    total_sessions: int = 0
    absent_sessions: int = 0
    attendance_score: float = 10
    is_failed_due_to_absent: bool = False
    final_score: Optional[float] = None


class ClassAttendanceStats(BaseModel):
    class_id: int
    completed_sessions: int
    total_sessions: int
    sessions: List[SessionStats]
    students: List[StudentStats]


class StudentSessionAttendance(BaseModel):
    session_id: int
    session_number: int
    date: date
    start_time: datetime
    end_time: datetime
    session_status: str
    attendance_status: str
    note: Optional[str] = None
    can_mark_attendance: bool


class AttendanceSummary(BaseModel):
    completed_sessions: int = 0
    present: int = 0
    absent: int = 0
    late: int = 0
    excused: int = 0


class StudentAttendanceDetail(BaseModel):
    class_id: int
    student_id: int
    sessions: List[StudentSessionAttendance]
    summary: AttendanceSummary
    score: Optional[StudentScoreRead] = None


class MyAttendanceScore(BaseModel):
    class_id: int
    student_id: int
    total_sessions: int
    present: int
    absent: int
    late: int
    excused: int
    attendance_rate: float
    score: Optional[StudentScoreRead] = None
