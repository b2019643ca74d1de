import re
from datetime import date, datetime, time

from app.core.exceptions import ValidationError

TIME_PATTERN = re.compile(r"^([01][0-9]|2[0-3]):[0-5][0-9]$")


def validate_id(value: int, name: str = "ID") -> int:
    """
    Проверяет идентификатор сущности.
    Ссылки между документами - положительные целые числа.
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer")

    if value <= 0:
        raise ValidationError(f"{name} must be positive")

    return value


def parse_hhmm(value: str) -> time:
    """
    Разбирает время "HH:MM" (24ч, с ведущими нулями).
    Формат гарантирует, что строковое сравнение совпадает с хронологическим.
    """
    if not value or not TIME_PATTERN.match(value):
        raise ValidationError(f"Invalid time '{value}'. Use zero-padded HH:MM")

    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def combine_date_time(day: date, hhmm: str) -> datetime:
    """Absolute timestamp of an HH:MM wall-clock time on the given day."""
    return datetime.combine(day, parse_hhmm(hhmm))


def ensure_range_within(
    start: date, end: date, outer_start: date, outer_end: date, what: str
) -> None:
    """Проверяет, что [start, end] лежит внутри [outer_start, outer_end]"""
    if start > end:
        raise ValidationError(
            f"{what} start date must not be after end date",
            {"start": start.isoformat(), "end": end.isoformat()},
        )

    if start < outer_start or end > outer_end:
        raise ValidationError(
            f"{what} must fall within the semester",
            {
                "semester_start": outer_start.isoformat(),
                "semester_end": outer_end.isoformat(),
                "course_start": start.isoformat(),
                "course_end": end.isoformat(),
            },
        )
