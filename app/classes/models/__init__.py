from app.core.database import Base
from .users import User, UserRole, UserStatus
from .semesters import Semester
from .subjects import Subject
from .rooms import Room
from .main_classes import MainClass
from .teaching_classes import TeachingClass
from .attendance import (
    AttendanceSession,
    AttendanceLog,
    SessionStatus,
    AttendanceStatus,
    PRESENT_LIST_STATUSES,
)
from .scores import StudentScore
from .notifications import Notification

__all__ = [
    "Base",
    "User",
    "UserRole",
    "UserStatus",
    "Semester",
    "Subject",
    "Room",
    "MainClass",
    "TeachingClass",
    "AttendanceSession",
    "AttendanceLog",
    "SessionStatus",
    "AttendanceStatus",
    "PRESENT_LIST_STATUSES",
    "StudentScore",
    "Notification",
]
