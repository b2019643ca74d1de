from datetime import date, datetime

import pytest

from app.core.exceptions import ValidationError
from app.core.validations import (
    combine_date_time,
    ensure_range_within,
    parse_hhmm,
    validate_id,
)
from app.classes.schemas.schedule import CandidateScheduleEntry, ScheduleEntry


def test_recurring_entry_is_valid():
    entry = ScheduleEntry(day_of_week=1, start_time="08:00", end_time="09:30", room_id=3)

    assert entry.is_recurring is True
    assert entry.specific_dates == []
    assert entry.excluded_dates == []


def test_sunday_is_a_valid_day():
    entry = ScheduleEntry(day_of_week=0, start_time="08:00", end_time="09:30", room_id=3)
    assert entry.day_of_week == 0


def test_start_must_be_before_end():
    with pytest.raises(ValidationError):
        ScheduleEntry(day_of_week=1, start_time="10:00", end_time="10:00", room_id=1)

    with pytest.raises(ValidationError):
        ScheduleEntry(day_of_week=1, start_time="11:00", end_time="09:00", room_id=1)


def test_room_is_required():
    with pytest.raises(ValidationError) as exc_info:
        ScheduleEntry(day_of_week=1, start_time="08:00", end_time="09:00")

    assert "room" in exc_info.value.message


def test_times_must_be_zero_padded():
    with pytest.raises(ValidationError):
        ScheduleEntry(day_of_week=1, start_time="8:00", end_time="09:00", room_id=1)


def test_recurring_entry_requires_day_of_week():
    with pytest.raises(ValidationError):
        ScheduleEntry(start_time="08:00", end_time="09:00", room_id=1)


def test_fixed_date_entry_requires_dates():
    with pytest.raises(ValidationError):
        ScheduleEntry(is_recurring=False, start_time="08:00", end_time="09:00", room_id=1)

    entry = ScheduleEntry(
        is_recurring=False,
        specific_dates=["2024-02-03"],
        start_time="08:00",
        end_time="09:00",
        room_id=1,
    )
    assert entry.specific_dates == [date(2024, 2, 3)]


def test_json_dump_keeps_dates_as_iso_strings():
    entry = ScheduleEntry(
        day_of_week=2,
        start_time="13:00",
        end_time="14:30",
        room_id=1,
        excluded_dates=[date(2024, 1, 9)],
    )
    dumped = entry.model_dump(mode="json")

    assert dumped["excluded_dates"] == ["2024-01-09"]
    assert ScheduleEntry.model_validate(dumped) == entry


def test_candidate_entry_allows_missing_fields():
    candidate = CandidateScheduleEntry(day_of_week=1, start_time="08:00")
    assert candidate.is_complete is False

    candidate = CandidateScheduleEntry(
        day_of_week=0, start_time="08:00", end_time="09:00", room_id=2
    )
    assert candidate.is_complete is True


def test_candidate_entry_rejects_inverted_interval():
    with pytest.raises(ValidationError):
        CandidateScheduleEntry(day_of_week=1, start_time="10:00", end_time="09:00", room_id=1)
    with pytest.raises(ValidationError):
        CandidateScheduleEntry(day_of_week=1, start_time="09:00", end_time="09:00", room_id=1)


@pytest.mark.parametrize("value", [0, -5, True, "7"])
def test_validate_id_rejects_bad_ids(value):
    with pytest.raises(ValidationError):
        validate_id(value, "Class ID")


def test_validate_id_accepts_positive_int():
    assert validate_id(42) == 42


def test_combine_date_time():
    assert combine_date_time(date(2024, 1, 8), "08:15") == datetime(2024, 1, 8, 8, 15)

    with pytest.raises(ValidationError):
        parse_hhmm("25:00")


def test_range_within_semester():
    ensure_range_within(
        date(2024, 1, 10), date(2024, 3, 1), date(2024, 1, 1), date(2024, 5, 31), "Course"
    )

    with pytest.raises(ValidationError) as exc_info:
        ensure_range_within(
            date(2023, 12, 20), date(2024, 3, 1), date(2024, 1, 1), date(2024, 5, 31), "Course"
        )
    assert exc_info.value.details["semester_start"] == "2024-01-01"

    with pytest.raises(ValidationError):
        ensure_range_within(
            date(2024, 3, 1), date(2024, 2, 1), date(2024, 1, 1), date(2024, 5, 31), "Course"
        )
