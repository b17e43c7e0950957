from sqlalchemy import (
    BigInteger, Column, String, DateTime, Integer, Text, ForeignKey
)
from sqlalchemy.sql import func

from pkg.db_util.sql_alchemy.declarative_base import Base

# SQLite only autoincrements INTEGER PRIMARY KEY columns
SequenceType = BigInteger().with_variant(Integer, "sqlite")


# Room Table (one row per chat log, unique per room id)
class ChatRoomModel(Base):
    __tablename__ = "chat_rooms"

    room_id = Column(String, primary_key=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


# Message Table (append-only, ordered by seq)
class ChatRoomMessageModel(Base):
    __tablename__ = "chat_room_messages"

    seq = Column(SequenceType, primary_key=True, autoincrement=True)
    message_id = Column(String, nullable=False, unique=True)
    room_id = Column(String, ForeignKey("chat_rooms.room_id"), nullable=False, index=True)
    sender = Column(String, nullable=False)
    user_id = Column(String, nullable=True)
    user_name = Column(String, nullable=True)
    text = Column(Text, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)
