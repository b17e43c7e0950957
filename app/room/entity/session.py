import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

FrameSender = Callable[[Dict[str, Any]], Awaitable[None]]


@dataclass
class Session:
    """One live relay connection, bound to at most one room."""

    session_id: str
    send: FrameSender
    room_id: Optional[str] = None
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    _send_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    async def deliver(self, payload: Dict[str, Any]) -> None:
        # frames to one connection are written one at a time
        async with self._send_lock:
            await self.send(payload)
