"""
Shared fixtures and test doubles for the room chat tests.
"""

import asyncio
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from app.chat.repository.chat_repository import ChatRepository
from app.chat.repository.memory_repository import InMemoryHistoryStore
from app.chat.repository.sql_schema import room_chat  # noqa: F401
from app.llm.service.llm_service import AIResponseOrchestrator
from app.llm.service.provider.base_provider import BaseProvider
from app.llm.service.router_service import FallbackRouter
from app.relay.service.relay import ChatRelay
from app.room.service.membership import RoomMembership
from app.typing.repository.typing_store import ITypingStore
from pkg.db_util.sql_alchemy.declarative_base import Base


class FakeProvider(BaseProvider):
    """Scripted LLM provider."""

    def __init__(self, name: str, reply: Any = "Happy to help!", error: Optional[Exception] = None,
                 enabled: bool = True, delay: float = 0.0):
        self.name = name
        self.reply = reply
        self.error = error
        self.enabled = enabled
        self.delay = delay
        self.prompts: List[str] = []

    def is_enabled(self) -> bool:
        return self.enabled

    async def generate(self, prompt: str, temperature: float = 0.7, max_tokens: int = 500, **kwargs) -> str:
        self.prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.reply


class FrameRecorder:
    """Stands in for a websocket's send_json."""

    def __init__(self, fail: bool = False):
        self.frames: List[Dict[str, Any]] = []
        self.fail = fail

    async def __call__(self, payload: Dict[str, Any]) -> None:
        if self.fail:
            raise ConnectionError("socket closed")
        self.frames.append(payload)

    def events(self) -> List[str]:
        return [f["event"] for f in self.frames]

    def of(self, event: str) -> List[Dict[str, Any]]:
        return [f["data"] for f in self.frames if f["event"] == event]

    def clear(self) -> None:
        self.frames.clear()


class FakeTypingStore(ITypingStore):
    """In-process typing map with change notification."""

    def __init__(self):
        self.entries: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.calls: List[tuple] = []
        self.fail = False
        self._watchers: List[tuple] = []

    async def set_typing(self, room_id: str, user_id: str, user_name: str) -> None:
        if self.fail:
            raise ConnectionError("redis down")
        self.calls.append(("set", room_id, user_id))
        self.entries.setdefault(room_id, {})[user_id] = {"username": user_name, "isTyping": True}
        self._notify(room_id)

    async def clear_typing(self, room_id: str, user_id: str) -> None:
        if self.fail:
            raise ConnectionError("redis down")
        self.calls.append(("clear", room_id, user_id))
        self.entries.get(room_id, {}).pop(user_id, None)
        self._notify(room_id)

    async def snapshot(self, room_id: str) -> Dict[str, Dict[str, Any]]:
        return {uid: dict(rec) for uid, rec in self.entries.get(room_id, {}).items()}

    async def watch(self, room_id: str):
        queue: asyncio.Queue = asyncio.Queue()
        self._watchers.append((room_id, queue))
        yield await self.snapshot(room_id)
        while True:
            await queue.get()
            yield await self.snapshot(room_id)

    def _notify(self, room_id: str) -> None:
        for watched, queue in self._watchers:
            if watched == room_id:
                queue.put_nowait(None)


async def wait_until(condition, timeout: float = 1.0, interval: float = 0.005) -> None:
    """Poll condition() until it is truthy or fail after timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)


def join_frame(room_id: str, user_id: str, user_name: str) -> Dict[str, Any]:
    return {"event": "join", "data": {"roomId": room_id, "userId": user_id, "userName": user_name}}


def send_frame(room_id: str, user_id: str, user_name: str, text: str) -> Dict[str, Any]:
    return {"event": "send", "data": {"roomId": room_id, "userId": user_id, "userName": user_name, "text": text}}


def typing_frame(room_id: str, user_id: str, user_name: str, is_typing: bool) -> Dict[str, Any]:
    return {"event": "typing", "data": {"roomId": room_id, "userId": user_id, "userName": user_name, "isTyping": is_typing}}


@pytest.fixture
def primary():
    return FakeProvider("primary", reply="Primary answer")


@pytest.fixture
def fallback():
    return FakeProvider("fallback", reply="Fallback answer")


@pytest.fixture
def history():
    return InMemoryHistoryStore()


@pytest.fixture
def orchestrator(primary, fallback):
    return AIResponseOrchestrator(FallbackRouter([primary, fallback], request_timeout_ms=1000))


@pytest.fixture
def membership():
    return RoomMembership()


@pytest.fixture
def relay(membership, history, orchestrator):
    return ChatRelay(membership, history, orchestrator)


@pytest.fixture
async def sql_sessions(tmp_path):
    """Session factory over a throwaway SQLite file with the history tables created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'history.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def sql_store(sql_sessions):
    return ChatRepository(sql_sessions)
