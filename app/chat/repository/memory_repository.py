# app/chat/repository/memory_repository.py

import asyncio
from typing import Dict, List, Optional

from app.chat.entity.chat import ChatLog, ChatStats, Message, utcnow
from app.chat.service.service import IHistoryStore
from app.core.errors import NotFoundError
from app.core.logger import get_logger

logger = get_logger(__name__)


class InMemoryHistoryStore(IHistoryStore):
    """Process-local chat logs for development and tests. Lost on restart."""

    def __init__(self):
        self._logs: Dict[str, ChatLog] = {}
        self._lock = asyncio.Lock()

    def _snapshot(self, log: ChatLog) -> ChatLog:
        return log.model_copy(update={"messages": list(log.messages)})

    async def get_or_create(self, room_id: str) -> ChatLog:
        async with self._lock:
            log = self._logs.get(room_id)
            if log is None:
                log = ChatLog(room_id=room_id)
                self._logs[room_id] = log
                logger.info(f"Created in-memory chat log for room {room_id}")
            return self._snapshot(log)

    async def get(self, room_id: str) -> Optional[ChatLog]:
        log = self._logs.get(room_id)
        return self._snapshot(log) if log is not None else None

    async def append_message(self, room_id: str, message: Message) -> Message:
        async with self._lock:
            log = self._logs.get(room_id)
            if log is None:
                raise NotFoundError("Room not found", room_id=room_id)
            stored = message.not_before(log.messages[-1].timestamp if log.messages else None)
            log.messages.append(stored)
            log.updated_at = utcnow()
            return stored

    async def recent(self, room_id: str, limit: int) -> List[Message]:
        log = self._logs.get(room_id)
        return log.recent(limit) if log is not None else []

    async def clear(self, room_id: str) -> bool:
        async with self._lock:
            log = self._logs.get(room_id)
            if log is None:
                return False
            log.messages = []
            log.updated_at = utcnow()
        logger.info(f"Cleared in-memory chat history for room {room_id}")
        return True

    async def stats(self, room_id: str) -> ChatStats:
        return ChatStats.from_log(self._logs.get(room_id))
