# app/client/session_controller.py
import asyncio
import json
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

from websockets.exceptions import WebSocketException

from app.chat.entity.chat import Message
from app.client.transport import RelayTransport, TransportClosed, WebSocketTransport
from app.core.logger import get_logger
from app.relay.entity.events import ClientEvent, ServerEvent, frame
from app.typing.entity.typing import DEFAULT_DEBOUNCE_MS
from app.typing.repository.typing_store import ITypingStore
from app.typing.service.reconciler import Clock, TypingIndicator, TypingReconciler

logger = get_logger("ClientSession")

Connector = Callable[[str], Awaitable[RelayTransport]]

RECONNECT_ATTEMPTS = 5
RECONNECT_DELAY_MS = 1000

# failures that count against the reconnect budget
CONNECTION_ERRORS = (OSError, TransportClosed, asyncio.TimeoutError, WebSocketException)


class ClientSessionController:
    """
    Client side of one participant in one room.

    Keeps a relay connection alive with a bounded number of reconnects,
    re-joins on every (re)connect, mirrors the room's messages locally, and
    shows who else is typing from both typing channels.
    """

    def __init__(
        self,
        url: str,
        room_id: str,
        user_id: str,
        user_name: str,
        typing_store: Optional[ITypingStore] = None,
        connector: Optional[Connector] = None,
        reconnect_attempts: int = RECONNECT_ATTEMPTS,
        reconnect_delay_ms: int = RECONNECT_DELAY_MS,
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
        clock: Clock = time.monotonic,
    ):
        self.url = url
        self.room_id = room_id
        self.user_id = user_id
        self.user_name = user_name
        self.typing_store = typing_store
        self.connector: Connector = connector or WebSocketTransport.open
        self.reconnect_attempts = reconnect_attempts
        self.reconnect_delay = reconnect_delay_ms / 1000

        self.messages: List[Message] = []
        self.notice: Optional[str] = None
        self.last_error: Optional[str] = None
        self.connected = False
        self.gave_up = False
        self.reconciler = TypingReconciler(user_id, debounce_ms=debounce_ms, clock=clock)
        self.indicator = TypingIndicator(
            room_id, user_id, user_name, typing_store, self._emit_typing, debounce_ms=debounce_ms
        )

        self._transport: Optional[RelayTransport] = None
        self._run_task: Optional[asyncio.Task] = None
        self._watch_task: Optional[asyncio.Task] = None
        self._joined = asyncio.Event()
        self._closing = False

    # ----------------------------
    # Lifecycle
    # ----------------------------

    async def start(self) -> None:
        """Connect in the background and wait until the first history arrives or reconnects run out."""
        if self._run_task is None:
            self._run_task = asyncio.create_task(self.run())
            self._watch_task = self._start_typing_watch()
        joined = asyncio.create_task(self._joined.wait())
        await asyncio.wait({joined, self._run_task}, return_when=asyncio.FIRST_COMPLETED)
        if not joined.done():
            joined.cancel()

    async def run(self) -> None:
        """Connection loop: connect, join, read frames; reconnect on loss until attempts run out."""
        failures = 0
        while not self._closing:
            try:
                self._transport = await self.connector(self.url)
            except CONNECTION_ERRORS as e:
                failures += 1
                logger.warning(f"Connection error ({failures}/{self.reconnect_attempts}): {e}")
                if failures > self.reconnect_attempts:
                    break
                await asyncio.sleep(self.reconnect_delay)
                continue

            failures = 0
            self.connected = True
            logger.info(f"Connected to relay at {self.url}")
            try:
                await self._send(ClientEvent.JOIN, self._identity())
                while True:
                    self._dispatch(await self._transport.receive())
            except CONNECTION_ERRORS + (json.JSONDecodeError,) as e:
                if not self._closing:
                    logger.warning(f"Relay connection lost: {e}")
            finally:
                self.connected = False
                self._joined.clear()

            if not self._closing:
                failures += 1
                if failures > self.reconnect_attempts:
                    break
                await asyncio.sleep(self.reconnect_delay)

        if not self._closing:
            self.gave_up = True
            logger.error(f"Giving up on relay after {self.reconnect_attempts} reconnection attempts")

    async def close(self) -> None:
        """Leave the room, clear own typing entry, then disconnect. Safe to call twice."""
        if self._closing:
            return
        await self.indicator.stop()
        self._closing = True
        if self.connected:
            try:
                await self._send(ClientEvent.LEAVE, self._identity())
            except CONNECTION_ERRORS as e:
                logger.debug(f"Leave not delivered: {e}")
        if self._transport is not None:
            await self._transport.close()
        for task in (self._watch_task, self._run_task):
            if task is not None and not task.done():
                task.cancel()
        await asyncio.gather(
            *(t for t in (self._watch_task, self._run_task) if t is not None),
            return_exceptions=True,
        )
        self.connected = False
        self.reconciler.reset()

    # ----------------------------
    # Outgoing
    # ----------------------------

    async def send_message(self, text: str) -> bool:
        if not text or not text.strip() or not self.connected:
            return False
        await self.indicator.stop()
        await self._send(ClientEvent.SEND, {**self._identity(), "text": text.strip()})
        return True

    async def set_typing(self, is_typing: bool) -> None:
        if is_typing:
            await self.indicator.keystroke()
        else:
            await self.indicator.stop()

    async def _emit_typing(self, is_typing: bool) -> None:
        if self.connected:
            await self._send(ClientEvent.TYPING, {**self._identity(), "isTyping": is_typing})

    async def _send(self, event: ClientEvent, data: Dict[str, Any]) -> None:
        if self._transport is None:
            raise TransportClosed("Not connected")
        await self._transport.send(frame(event, data))

    def _identity(self) -> Dict[str, str]:
        return {"roomId": self.room_id, "userId": self.user_id, "userName": self.user_name}

    # ----------------------------
    # Incoming
    # ----------------------------

    def _dispatch(self, payload: Dict[str, Any]) -> None:
        event = payload.get("event")
        data = payload.get("data") or {}

        if event == ServerEvent.HISTORY.value:
            self.messages = [Message.model_validate(m) for m in data.get("messages", [])]
            logger.info(f"Loaded chat history: {len(self.messages)} messages")
            self._joined.set()
        elif event in (ServerEvent.MESSAGE.value, ServerEvent.AI_RESPONSE.value):
            self.messages.append(Message.model_validate(data))
        elif event == ServerEvent.USER_TYPING.value:
            self.reconciler.apply_relay(data)
        elif event == ServerEvent.USER_JOINED.value:
            self.notice = f"{data.get('userName')} joined the room"
        elif event == ServerEvent.USER_LEFT.value:
            self.notice = f"{data.get('userName')} left the room"
        elif event == ServerEvent.ERROR.value:
            self.last_error = data.get("message")
            logger.error(f"Relay error: {self.last_error}")
        else:
            logger.debug(f"Ignoring unknown event {event}")

    def _start_typing_watch(self) -> Optional[asyncio.Task]:
        if self.typing_store is None:
            return None

        async def watch():
            try:
                async for snapshot in self.typing_store.watch(self.room_id):
                    self.reconciler.apply_snapshot(snapshot)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Typing store subscription ended: {e}")

        return asyncio.create_task(watch())

    # ----------------------------
    # View
    # ----------------------------

    @property
    def typing_label(self) -> Optional[str]:
        return self.reconciler.current_label()

    @property
    def input_locked(self) -> bool:
        return self.reconciler.input_locked

    async def __aenter__(self) -> "ClientSessionController":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
