from sqlalchemy import (
    Column,
    Integer,
    String,
    Date,
    Boolean,
    DateTime,
    ForeignKey,
    JSON,
    Index,
)

from app.core import clock
from app.core.config import DEFAULT_MAX_ABSENT_ALLOWED, DEFAULT_TOTAL_SESSIONS
from app.core.database import Base


class TeachingClass(Base):
    """
    Учебный класс: одна дисциплина одного преподавателя в одном семестре.

    Корень агрегата: владеет занятиями (AttendanceSession), через них -
    отметками посещаемости. StudentScore - производная проекция.
    """

    __tablename__ = "teaching_classes"

    id = Column(Integer, primary_key=True, index=True)
    class_name = Column(String(150), nullable=False)
    class_code = Column(String(50), nullable=True, index=True)

    subject_id = Column(Integer, ForeignKey("subjects.id"), nullable=True, index=True)
    teacher_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    main_class_id = Column(Integer, ForeignKey("main_classes.id"), nullable=True)
    semester_id = Column(Integer, ForeignKey("semesters.id"), nullable=False, index=True)

    total_sessions = Column(Integer, nullable=False, default=DEFAULT_TOTAL_SESSIONS)
    max_absent_allowed = Column(
        Integer, nullable=False, default=DEFAULT_MAX_ABSENT_ALLOWED
    )

    # Встроенные записи расписания (см. schemas.schedule.ScheduleEntry)
    schedule = Column(JSON, nullable=False, default=list)
    # Уникальные ID студентов
    students = Column(JSON, nullable=False, default=list)

    course_start_date = Column(Date, nullable=True)
    course_end_date = Column(Date, nullable=True)
    auto_generate_sessions = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), default=clock.now)
    updated_at = Column(DateTime(timezone=True), default=clock.now, onupdate=clock.now)

    __table_args__ = (
        Index("ix_teaching_classes_teacher_semester", "teacher_id", "semester_id"),
    )

    def has_student(self, student_id: int) -> bool:
        return student_id in (self.students or [])

    def __repr__(self):
        return f"<TeachingClass(id={self.id}, class_name='{self.class_name}', teacher_id={self.teacher_id})>"
