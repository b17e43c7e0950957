# app/chat/repository/chat_repository.py

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import delete, func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.future import select

from app.chat.entity.chat import ChatLog, ChatStats, Message, Sender, utcnow
from app.chat.repository.sql_schema.room_chat import ChatRoomModel, ChatRoomMessageModel
from app.chat.service.service import IHistoryStore
from app.core.errors import NotFoundError, StoreUnavailable
from app.core.logger import get_logger

logger = get_logger(__name__)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_message(row: ChatRoomMessageModel) -> Message:
    return Message(
        id=row.message_id,
        sender=Sender(row.sender),
        user_id=row.user_id,
        user_name=row.user_name,
        text=row.text,
        timestamp=_as_utc(row.timestamp),
    )


class ChatRepository(IHistoryStore):
    """
    Room chat logs stored in SQL.

    Each message is its own row, so an append is a single server-side INSERT and
    concurrent senders never overwrite each other. The room row carries the
    uniqueness constraint that keeps one log per room id.
    """

    def __init__(self, db_session_factory, logger_=None):
        self.db_session_factory = db_session_factory
        self.logger = logger_ or logger

    def _unavailable(self, operation: str, room_id: str, error: Exception) -> StoreUnavailable:
        self.logger.error(f"History store {operation} failed for room {room_id}: {error}", exc_info=True)
        return StoreUnavailable("Chat history is temporarily unavailable", details=str(error), room_id=room_id)

    # ────────────────────────────────────────────────
    # Log lifecycle
    # ────────────────────────────────────────────────

    async def get_or_create(self, room_id: str) -> ChatLog:
        existing = await self.get(room_id)
        if existing is not None:
            return existing

        now = utcnow()
        try:
            async with self.db_session_factory() as session:
                async with session.begin():
                    session.add(ChatRoomModel(room_id=room_id, created_at=now, updated_at=now))
            self.logger.info(f"Created chat log for room {room_id}")
        except IntegrityError:
            # another session created the log first
            self.logger.debug(f"Chat log for room {room_id} already created concurrently")
        except (SQLAlchemyError, OSError, ConnectionError) as e:
            raise self._unavailable("create", room_id, e) from e

        created = await self.get(room_id)
        if created is None:
            raise StoreUnavailable("Chat log could not be created", room_id=room_id)
        return created

    async def get(self, room_id: str) -> Optional[ChatLog]:
        try:
            async with self.db_session_factory() as session:
                result = await session.execute(
                    select(ChatRoomModel).where(ChatRoomModel.room_id == room_id)
                )
                room = result.scalar_one_or_none()
                if room is None:
                    return None

                result_msgs = await session.execute(
                    select(ChatRoomMessageModel)
                    .where(ChatRoomMessageModel.room_id == room_id)
                    .order_by(ChatRoomMessageModel.seq.asc())
                )
                return ChatLog(
                    room_id=room.room_id,
                    messages=[_to_message(m) for m in result_msgs.scalars().all()],
                    created_at=_as_utc(room.created_at),
                    updated_at=_as_utc(room.updated_at),
                )
        except (SQLAlchemyError, OSError, ConnectionError) as e:
            raise self._unavailable("read", room_id, e) from e

    async def clear(self, room_id: str) -> bool:
        try:
            async with self.db_session_factory() as session:
                async with session.begin():
                    touched = await session.execute(
                        update(ChatRoomModel)
                        .where(ChatRoomModel.room_id == room_id)
                        .values(updated_at=utcnow())
                    )
                    if touched.rowcount == 0:
                        return False
                    await session.execute(
                        delete(ChatRoomMessageModel).where(ChatRoomMessageModel.room_id == room_id)
                    )
        except (SQLAlchemyError, OSError, ConnectionError) as e:
            raise self._unavailable("clear", room_id, e) from e
        self.logger.info(f"Cleared chat history for room {room_id}")
        return True

    # ────────────────────────────────────────────────
    # Messages
    # ────────────────────────────────────────────────

    async def append_message(self, room_id: str, message: Message) -> Message:
        """
        Append one message as a single INSERT; previous rows are never touched.

        Touching the room row first takes its row lock, so appends to one room
        commit one at a time and the last stored timestamp read afterwards is final.
        """
        try:
            async with self.db_session_factory() as session:
                async with session.begin():
                    touched = await session.execute(
                        update(ChatRoomModel)
                        .where(ChatRoomModel.room_id == room_id)
                        .values(updated_at=utcnow())
                    )
                    if touched.rowcount == 0:
                        raise NotFoundError("Room not found", room_id=room_id)

                    last = await session.execute(
                        select(ChatRoomMessageModel.timestamp)
                        .where(ChatRoomMessageModel.room_id == room_id)
                        .order_by(ChatRoomMessageModel.seq.desc())
                        .limit(1)
                    )
                    stored = message.not_before(_as_utc(last.scalar_one_or_none()))
                    session.add(
                        ChatRoomMessageModel(
                            message_id=stored.id,
                            room_id=room_id,
                            sender=stored.sender.value,
                            user_id=stored.user_id,
                            user_name=stored.user_name,
                            text=stored.text,
                            timestamp=stored.timestamp,
                        )
                    )
        except NotFoundError:
            raise
        except (SQLAlchemyError, OSError, ConnectionError) as e:
            raise self._unavailable("append", room_id, e) from e

        self.logger.debug(f"Appended {stored.sender.value} message {stored.id} to room {room_id}")
        return stored

    async def recent(self, room_id: str, limit: int) -> List[Message]:
        if limit <= 0:
            return []
        try:
            async with self.db_session_factory() as session:
                result = await session.execute(
                    select(ChatRoomMessageModel)
                    .where(ChatRoomMessageModel.room_id == room_id)
                    .order_by(ChatRoomMessageModel.seq.desc())
                    .limit(limit)
                )
                rows = list(result.scalars().all())
        except (SQLAlchemyError, OSError, ConnectionError) as e:
            raise self._unavailable("read", room_id, e) from e
        return [_to_message(m) for m in reversed(rows)]

    async def stats(self, room_id: str) -> ChatStats:
        try:
            async with self.db_session_factory() as session:
                result = await session.execute(
                    select(ChatRoomModel).where(ChatRoomModel.room_id == room_id)
                )
                room = result.scalar_one_or_none()
                if room is None:
                    return ChatStats()

                counts = await session.execute(
                    select(ChatRoomMessageModel.sender, func.count())
                    .where(ChatRoomMessageModel.room_id == room_id)
                    .group_by(ChatRoomMessageModel.sender)
                )
                by_sender = {sender: count for sender, count in counts.all()}

                last = await session.execute(
                    select(ChatRoomMessageModel.timestamp)
                    .where(ChatRoomMessageModel.room_id == room_id)
                    .order_by(ChatRoomMessageModel.seq.desc())
                    .limit(1)
                )
                last_ts = last.scalar_one_or_none()
        except (SQLAlchemyError, OSError, ConnectionError) as e:
            raise self._unavailable("stats", room_id, e) from e

        user_messages = by_sender.get(Sender.USER.value, 0)
        ai_messages = by_sender.get(Sender.ASSISTANT.value, 0)
        return ChatStats(
            total_messages=user_messages + ai_messages,
            user_messages=user_messages,
            ai_messages=ai_messages,
            last_activity=_as_utc(last_ts) if last_ts is not None else _as_utc(room.created_at),
        )
