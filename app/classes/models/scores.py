from sqlalchemy import (
    Column,
    Integer,
    Float,
    Boolean,
    Text,
    DateTime,
    ForeignKey,
    UniqueConstraint,
)

from app.core import clock
from app.core.config import DEFAULT_MAX_ABSENT_ALLOWED
from app.core.database import Base


class StudentScore(Base):
    """
    Кэш баллов посещаемости для пары (класс, студент).

    Пересчитывается из AttendanceSession/AttendanceLog и никогда не
    считается источником истины для числа пропусков.
    """

    __tablename__ = "student_scores"

    id = Column(Integer, primary_key=True, index=True)
    teaching_class_id = Column(
        Integer, ForeignKey("teaching_classes.id"), nullable=False, index=True
    )
    student_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # Число завершенных занятий, а не плановое total_sessions класса
    total_sessions = Column(Integer, nullable=False, default=0)
    absent_sessions = Column(Integer, nullable=False, default=0)
    attendance_score = Column(Float, nullable=False, default=10)
    max_absent_allowed = Column(
        Integer, nullable=False, default=DEFAULT_MAX_ABSENT_ALLOWED
    )
    is_failed_due_to_absent = Column(Boolean, nullable=False, default=False)

    # Выставляется преподавателем вручную
    final_score = Column(Float, nullable=True)
    note = Column(Text, nullable=True)

    last_updated = Column(DateTime(timezone=True), default=clock.now)

    __table_args__ = (
        UniqueConstraint("teaching_class_id", "student_id", name="uq_student_score_class_student"),
    )

    def __repr__(self):
        return f"<StudentScore(class_id={self.teaching_class_id}, student_id={self.student_id}, absent={self.absent_sessions}, score={self.attendance_score})>"
