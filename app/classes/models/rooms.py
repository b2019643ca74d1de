from sqlalchemy import Column, Integer, String

from app.core.database import Base


class Room(Base):
    __tablename__ = "rooms"

    id = Column(Integer, primary_key=True, index=True)
    room_number = Column(String(30), nullable=False)
    building = Column(String(100), nullable=True)
    capacity = Column(Integer, nullable=True)

    def __repr__(self):
        return f"<Room(id={self.id}, room_number='{self.room_number}')>"
