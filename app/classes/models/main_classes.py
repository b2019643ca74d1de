from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON

from app.core import clock
from app.core.database import Base


class MainClass(Base):
    """Административная (домашняя) группа студентов с куратором"""

    __tablename__ = "main_classes"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    class_code = Column(String(30), nullable=False, unique=True)
    advisor_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    # Списки ID студентов
    students = Column(JSON, nullable=False, default=list)
    pending_students = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime(timezone=True), default=clock.now)
    updated_at = Column(DateTime(timezone=True), default=clock.now, onupdate=clock.now)

    def __repr__(self):
        return f"<MainClass(id={self.id}, class_code='{self.class_code}')>"
