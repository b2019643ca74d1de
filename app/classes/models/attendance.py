from enum import Enum

from sqlalchemy import (
    Column,
    Integer,
    String,
    Date,
    Text,
    DateTime,
    ForeignKey,
    JSON,
    Index,
    UniqueConstraint,
)

from app.core import clock
from app.core.database import Base


class SessionStatus(str, Enum):
    pending = "pending"  # Сгенерировано, еще не проводилось
    in_progress = "in_progress"
    completed = "completed"  # Только такие занятия учитываются в баллах
    cancelled = "cancelled"


class AttendanceStatus(str, Enum):
    present = "present"
    absent = "absent"
    late = "late"
    excused = "excused"


# Статусы, при которых студент попадает в students_present
PRESENT_LIST_STATUSES = frozenset({AttendanceStatus.present, AttendanceStatus.late})


class AttendanceSession(Base):
    """Одно конкретное занятие учебного класса"""

    __tablename__ = "attendance_sessions"

    id = Column(Integer, primary_key=True, index=True)
    teaching_class_id = Column(
        Integer, ForeignKey("teaching_classes.id"), nullable=False, index=True
    )
    session_number = Column(Integer, nullable=False)

    date = Column(Date, nullable=False)
    room_id = Column(Integer, ForeignKey("rooms.id"), nullable=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)

    status = Column(
        String(20), nullable=False, default=SessionStatus.pending.value, index=True
    )

    # Грубые списки для отображения; источник истины - AttendanceLog
    students_present = Column(JSON, nullable=False, default=list)
    students_absent = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime(timezone=True), default=clock.now)
    updated_at = Column(DateTime(timezone=True), default=clock.now, onupdate=clock.now)

    __table_args__ = (
        Index("ix_attendance_sessions_class_status", "teaching_class_id", "status"),
        Index("ix_attendance_sessions_class_number", "teaching_class_id", "session_number"),
    )

    def __repr__(self):
        return f"<AttendanceSession(id={self.id}, class_id={self.teaching_class_id}, number={self.session_number}, status={self.status})>"


class AttendanceLog(Base):
    """Отметка одного студента на одном занятии"""

    __tablename__ = "attendance_logs"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(
        Integer, ForeignKey("attendance_sessions.id"), nullable=False, index=True
    )
    student_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False)
    note = Column(Text, nullable=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=clock.now)

    __table_args__ = (
        UniqueConstraint("session_id", "student_id", name="uq_attendance_log_session_student"),
    )

    def __repr__(self):
        return f"<AttendanceLog(session_id={self.session_id}, student_id={self.student_id}, status={self.status})>"
