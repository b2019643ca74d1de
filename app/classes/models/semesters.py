from sqlalchemy import Column, Integer, String, Date, DateTime

from app.core import clock
from app.core.database import Base


class Semester(Base):
    __tablename__ = "semesters"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    academic_year = Column(String(20), nullable=True, index=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)

    created_at = Column(DateTime(timezone=True), default=clock.now)

    def __repr__(self):
        return f"<Semester(id={self.id}, name='{self.name}', {self.start_date}..{self.end_date})>"
