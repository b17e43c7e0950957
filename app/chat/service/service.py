from abc import ABC, abstractmethod
from typing import List, Optional
from app.chat.entity.chat import ChatLog, ChatStats, Message
from app.core.errors import NotFoundError


class IHistoryStore(ABC):
    """Per-room ordered message log. Implementations raise StoreUnavailable on backend failure."""

    @abstractmethod
    async def get_or_create(self, room_id: str) -> ChatLog:
        pass

    @abstractmethod
    async def get(self, room_id: str) -> Optional[ChatLog]:
        pass

    @abstractmethod
    async def append_message(self, room_id: str, message: Message) -> Message:
        """
        Atomically add one message and return it as stored.
        The stored timestamp is never earlier than the room's previous message.
        """
        pass

    async def append(self, room_id: str, message: Message) -> ChatLog:
        await self.append_message(room_id, message)
        log = await self.get(room_id)
        if log is None:
            raise NotFoundError("Room not found", room_id=room_id)
        return log

    @abstractmethod
    async def recent(self, room_id: str, limit: int) -> List[Message]:
        pass

    @abstractmethod
    async def clear(self, room_id: str) -> bool:
        pass

    @abstractmethod
    async def stats(self, room_id: str) -> ChatStats:
        pass

    async def close(self) -> None:
        pass
