from enum import Enum

from sqlalchemy import Column, Integer, String, DateTime, Index

from app.core import clock
from app.core.database import Base


class UserRole(str, Enum):
    admin = "admin"
    teacher = "teacher"
    student = "student"


class UserStatus(str, Enum):
    pending = "pending"  # Ждет одобрения куратора
    active = "active"
    rejected = "rejected"


class User(Base):
    """Учетная запись. Аутентификация живет во внешнем сервисе."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    full_name = Column(String(150), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    role = Column(String(20), nullable=False, default=UserRole.student.value)
    status = Column(String(20), nullable=False, default=UserStatus.active.value)

    # Только для студентов
    student_code = Column(String(30), nullable=True, index=True)
    main_class_id = Column(Integer, nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), default=clock.now)
    updated_at = Column(DateTime(timezone=True), default=clock.now, onupdate=clock.now)

    __table_args__ = (Index("ix_users_role_status", "role", "status"),)

    def __repr__(self):
        return f"<User(id={self.id}, role={self.role}, status={self.status})>"
