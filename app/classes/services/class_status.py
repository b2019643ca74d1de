from datetime import date
from typing import Optional, Tuple

from app.classes.schemas.teaching_classes import ClassStatus


def derive_class_status(
    start_date: Optional[date], end_date: Optional[date], today: date
) -> Tuple[ClassStatus, bool]:
    """Статус класса по окну семестра: (status, is_active)"""
    if not start_date or not end_date:
        return ClassStatus.unknown, False

    if today < start_date:
        return ClassStatus.not_started, False

    if today > end_date:
        return ClassStatus.ended, False

    return ClassStatus.ongoing, True
