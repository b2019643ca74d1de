"""Источник текущего времени. В тестах подменяется через monkeypatch."""

from datetime import date, datetime, timezone


def now() -> datetime:
    return datetime.now(timezone.utc)


def today() -> date:
    return now().date()
