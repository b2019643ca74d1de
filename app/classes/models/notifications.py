from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, JSON

from app.core import clock
from app.core.database import Base


class Notification(Base):
    """In-app уведомление. Доставка по email - во внешнем сервисе."""

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    receiver_id = Column(Integer, nullable=False, index=True)
    sender_id = Column(Integer, nullable=True)
    type = Column(String(50), nullable=False)
    content = Column(Text, nullable=False)
    link = Column(String(255), nullable=True)
    data = Column(JSON, nullable=True, default=dict)
    is_read = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), default=clock.now)

    def __repr__(self):
        return f"<Notification(id={self.id}, receiver_id={self.receiver_id}, type={self.type})>"
