from datetime import date
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.core.exceptions import ValidationError
from app.core.validations import TIME_PATTERN


def _check_hhmm(value: Optional[str], field_name: str) -> Optional[str]:
    if value is None:
        return value
    value = value.strip()
    if not TIME_PATTERN.match(value):
        raise ValidationError(
            f"{field_name} must be a zero-padded HH:MM time",
            {"field": field_name, "value": value},
        )
    return value


class ScheduleEntry(BaseModel):
    """
    Запись недельного расписания учебного класса.

    Либо повторяющееся занятие по дню недели (0=воскресенье .. 6=суббота),
    либо is_recurring=False со списком конкретных дат.
    """

    day_of_week: Optional[int] = Field(
        None, ge=0, le=6, description="0=Sunday .. 6=Saturday"
    )
    is_recurring: bool = Field(True, description="Weekly recurring entry")
    specific_dates: List[date] = Field(
        default_factory=list, description="Explicit dates for non-recurring entries"
    )
    start_time: str = Field(..., description="Start time, HH:MM")
    end_time: str = Field(..., description="End time, HH:MM")
    room_id: Optional[int] = Field(None, gt=0, description="Room ID")
    excluded_dates: List[date] = Field(
        default_factory=list, description="Dates skipped by a recurring entry"
    )

    model_config = ConfigDict(from_attributes=True)

    @field_validator("start_time")
    @classmethod
    def validate_start_time(cls, v):
        return _check_hhmm(v, "start_time")

    @field_validator("end_time")
    @classmethod
    def validate_end_time(cls, v):
        return _check_hhmm(v, "end_time")

    @model_validator(mode="after")
    def validate_entry(self):
        # HH:MM с ведущими нулями: строковое сравнение = хронологическое
        if self.start_time >= self.end_time:
            raise ValidationError(
                "Schedule entry start_time must be before end_time",
                {"start_time": self.start_time, "end_time": self.end_time},
            )

        if self.room_id is None:
            raise ValidationError("Schedule entry must have a room")

        if self.is_recurring and self.day_of_week is None:
            raise ValidationError("Recurring schedule entry requires day_of_week")

        if not self.is_recurring and not self.specific_dates:
            raise ValidationError(
                "Non-recurring schedule entry requires at least one specific date"
            )

        return self


class CandidateScheduleEntry(BaseModel):
    """Запись расписания для проверки конфликтов; неполные записи пропускаются"""

    day_of_week: Optional[int] = Field(None, ge=0, le=6)
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    room_id: Optional[int] = Field(None, gt=0)

    model_config = ConfigDict(from_attributes=True)

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_times(cls, v, info):
        return _check_hhmm(v, info.field_name)

    @model_validator(mode="after")
    def validate_interval(self):
        if (
            self.start_time is not None
            and self.end_time is not None
            and self.start_time >= self.end_time
        ):
            raise ValidationError(
                "Candidate start_time must be before end_time",
                {"start_time": self.start_time, "end_time": self.end_time},
            )
        return self

    @property
    def is_complete(self) -> bool:
        return (
            self.day_of_week is not None
            and self.start_time is not None
            and self.end_time is not None
            and self.room_id is not None
        )


class ConflictCheckRequest(BaseModel):
    teacher_id: Optional[int] = Field(None, gt=0, description="Teacher ID")
    schedule: List[CandidateScheduleEntry] = Field(default_factory=list)
    exclude_class_id: Optional[int] = Field(
        None, gt=0, description="Class being edited, ignored by the check"
    )


class ScheduleConflict(BaseModel):
    """Одно пересечение кандидата с существующим расписанием"""

    type: Literal["teacher", "room"]
    day_of_week: int
    room_id: int
    candidate_start: str
    candidate_end: str
    conflicting_start: str
    conflicting_end: str
    class_id: int
    class_name: str
    class_code: Optional[str] = None
    subject_id: Optional[int] = None
    subject_name: Optional[str] = None
    teacher_id: Optional[int] = None

    @property
    def overlap(self) -> tuple:
        return (
            max(self.candidate_start, self.conflicting_start),
            min(self.candidate_end, self.conflicting_end),
        )


class ConflictCheckResult(BaseModel):
    has_conflicts: bool
    conflicts: List[ScheduleConflict] = Field(default_factory=list)
