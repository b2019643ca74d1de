from sqlalchemy import Column, Integer, String

from app.core.database import Base


class Subject(Base):
    __tablename__ = "subjects"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    code = Column(String(30), nullable=False, unique=True)
    credits = Column(Integer, nullable=False, default=0)

    def __repr__(self):
        return f"<Subject(id={self.id}, code='{self.code}')>"
