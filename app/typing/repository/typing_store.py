# app/typing/repository/typing_store.py
import re
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict

from app.core.logger import get_logger
from app.typing.entity.typing import DEFAULT_DEBOUNCE_MS
from pkg.redis.client import RedisClient

logger = get_logger(__name__)

_GLOB_CHARS = re.compile(r"([*?\[\]\\])")


class ITypingStore(ABC):
    """Low-latency per-room typing map, addressable by (room_id, user_id)."""

    @abstractmethod
    async def set_typing(self, room_id: str, user_id: str, user_name: str) -> None:
        pass

    @abstractmethod
    async def clear_typing(self, room_id: str, user_id: str) -> None:
        pass

    @abstractmethod
    async def snapshot(self, room_id: str) -> Dict[str, Dict[str, Any]]:
        """user_id -> {"username": ..., "isTyping": ...} for every live entry."""
        pass

    @abstractmethod
    def watch(self, room_id: str) -> AsyncIterator[Dict[str, Dict[str, Any]]]:
        """Yield a fresh snapshot now and after every change in the room."""
        pass


class RedisTypingStore(ITypingStore):
    """
    Typing entries as per-user Redis keys with a TTL of one debounce window,
    plus a per-room pub/sub channel that announces every change.
    The TTL is the backstop for clients that vanish without clearing.
    """

    def __init__(self, redis_client: RedisClient, debounce_ms: int = DEFAULT_DEBOUNCE_MS):
        self.redis = redis_client
        self.debounce_ms = debounce_ms

    # Helper Key Builders

    def _channel(self, room_id: str) -> str:
        return f"rooms:{room_id}:typing"

    def _user_key(self, room_id: str, user_id: str) -> str:
        return f"rooms:{room_id}:typing:{user_id}"

    def _room_pattern(self, room_id: str) -> str:
        escaped = _GLOB_CHARS.sub(r"\\\1", room_id)
        return f"rooms:{escaped}:typing:*"

    async def set_typing(self, room_id: str, user_id: str, user_name: str) -> None:
        await self.redis.async_set_value(
            self._user_key(room_id, user_id),
            {"username": user_name, "isTyping": True},
            expiry=self.debounce_ms,
        )
        await self.redis.async_publish(self._channel(room_id), {"userId": user_id, "isTyping": True})

    async def clear_typing(self, room_id: str, user_id: str) -> None:
        await self.redis.async_delete(self._user_key(room_id, user_id))
        await self.redis.async_publish(self._channel(room_id), {"userId": user_id, "isTyping": False})

    async def snapshot(self, room_id: str) -> Dict[str, Dict[str, Any]]:
        prefix = self._user_key(room_id, "")
        entries = await self.redis.async_get_matching(self._room_pattern(room_id))
        return {
            key[len(prefix):]: value
            for key, value in entries.items()
            if key.startswith(prefix) and isinstance(value, dict)
        }

    async def watch(self, room_id: str) -> AsyncIterator[Dict[str, Dict[str, Any]]]:
        yield await self.snapshot(room_id)
        async for _ in self.redis.subscribe(self._channel(room_id)):
            yield await self.snapshot(room_id)
