from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.core.config import DEFAULT_MAX_ABSENT_ALLOWED, DEFAULT_TOTAL_SESSIONS
from app.core.exceptions import ValidationError
from app.classes.schemas.schedule import ScheduleEntry


class ClassStatus(str, Enum):
    not_started = "not_started"
    ongoing = "ongoing"
    ended = "ended"
    unknown = "unknown"


def _unique_ids(values: List[int], name: str) -> List[int]:
    # Удаляем дубликаты, сохраняя порядок
    seen = set()
    unique = []
    for value in values:
        if value <= 0:
            raise ValidationError(f"{name} must be positive")
        if value not in seen:
            seen.add(value)
            unique.append(value)
    return unique


class TeachingClassBase(BaseModel):
    class_name: str = Field(..., min_length=1, max_length=150)
    class_code: Optional[str] = Field(None, max_length=50)
    subject_id: Optional[int] = Field(None, gt=0, description="Subject ID")
    teacher_id: Optional[int] = Field(None, gt=0, description="Teacher ID")
    main_class_id: Optional[int] = Field(None, gt=0, description="Main class ID")
    semester_id: int = Field(..., gt=0, description="Semester ID")
    total_sessions: int = Field(DEFAULT_TOTAL_SESSIONS, ge=1, le=200)
    max_absent_allowed: int = Field(DEFAULT_MAX_ABSENT_ALLOWED, ge=0, le=200)
    schedule: List[ScheduleEntry] = Field(default_factory=list)
    course_start_date: Optional[date] = None
    course_end_date: Optional[date] = None
    auto_generate_sessions: bool = True

    model_config = ConfigDict(from_attributes=True, str_strip_whitespace=True)

    @field_validator("class_name")
    @classmethod
    def validate_class_name(cls, v):
        if not v or not v.strip():
            raise ValidationError("Class name cannot be empty")
        return v.strip()


class TeachingClassCreate(TeachingClassBase):
    students: List[int] = Field(default_factory=list, description="Student IDs")

    @field_validator("students")
    @classmethod
    def validate_students(cls, v):
        return _unique_ids(v, "Student ID")


class TeachingClassUpdate(BaseModel):
    """Частичное обновление; не переданные поля не меняются"""

    class_name: Optional[str] = Field(None, min_length=1, max_length=150)
    class_code: Optional[str] = Field(None, max_length=50)
    subject_id: Optional[int] = Field(None, gt=0)
    teacher_id: Optional[int] = Field(None, gt=0)
    main_class_id: Optional[int] = Field(None, gt=0)
    semester_id: Optional[int] = Field(None, gt=0)
    total_sessions: Optional[int] = Field(None, ge=1, le=200)
    max_absent_allowed: Optional[int] = Field(None, ge=0, le=200)
    schedule: Optional[List[ScheduleEntry]] = None
    course_start_date: Optional[date] = None
    course_end_date: Optional[date] = None
    auto_generate_sessions: Optional[bool] = None

    model_config = ConfigDict(from_attributes=True, str_strip_whitespace=True)


class TeachingClassRead(TeachingClassBase):
    id: int
    students: List[int] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # Вычисляется из окна семестра и текущей даты
    status: ClassStatus = ClassStatus.unknown
    is_active: bool = False

    model_config = ConfigDict(from_attributes=True)


class TeachingClassListResponse(BaseModel):
    """Ответ со списком учебных классов"""

    classes: List[TeachingClassRead]
    total: int = Field(..., ge=0, description="Total number of classes")
    page: int = Field(..., ge=1, description="Current page number")
    size: int = Field(..., ge=1, le=100, description="Number of items per page")
    pages: int = Field(..., ge=1, description="Total number of pages")
    filters: Optional[Dict[str, Any]] = Field(None, description="Applied filters")


class TeachingClassFilters(BaseModel):
    semester_id: Optional[int] = Field(None, gt=0)
    teacher_id: Optional[int] = Field(None, gt=0)
    subject_id: Optional[int] = Field(None, gt=0)
    main_class_id: Optional[int] = Field(None, gt=0)
    search: Optional[str] = Field(None, max_length=100)


class StudentAdd(BaseModel):
    student_id: int = Field(..., gt=0, description="Student ID")


class StudentBatchAdd(BaseModel):
    student_ids: List[int] = Field(..., min_length=1, max_length=500)

    @field_validator("student_ids")
    @classmethod
    def validate_student_ids(cls, v):
        return _unique_ids(v, "Student ID")


class StudentBatchAddResult(BaseModel):
    class_id: int
    added_count: int
    added: List[int]
    already_enrolled: List[int]


class SessionGenerationResult(BaseModel):
    class_id: int
    deleted_pending: int = 0
    generated: int = 0
    success: bool = True
    error: Optional[str] = None


class ClassMutationResult(BaseModel):
    """Результат удаления класса или исключения студента"""

    class_id: int
    student_id: Optional[int] = None
    message: str
    # Шаги каскада, упавшие и откаченные отдельно
    failed_steps: List[str] = Field(default_factory=list)
