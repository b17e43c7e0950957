# app/relay/service/relay.py
import asyncio
from collections import defaultdict
from typing import Any, Dict, List, Optional, Set

from pydantic import ValidationError as PayloadError

from app.chat.entity.chat import Message
from app.chat.service.service import IHistoryStore
from app.core.errors import ChatError, ValidationError
from app.core.logger import get_logger
from app.llm.service.llm_service import AIResponseOrchestrator, DEFAULT_CONTEXT_MESSAGES
from app.relay.entity.events import (
    ClientEvent,
    InboundFrame,
    RoomPayload,
    SendPayload,
    ServerEvent,
    SessionState,
    TypingPayload,
)
from app.room.entity.session import FrameSender, Session
from app.room.service.membership import RoomMembership

logger = get_logger("ChatRelay")

APOLOGY_TEXT = "Sorry, I'm having trouble responding right now. Please try again."

# error text per event when an unexpected failure escapes a handler
_FAILURE_MESSAGES = {
    ClientEvent.JOIN: "Failed to join room",
    ClientEvent.SEND: "Failed to send message",
    ClientEvent.TYPING: "Failed to update typing status",
    ClientEvent.LEAVE: "Failed to leave room",
}


class ChatRelay:
    """
    Per-connection event handling for room chat.

    Session states: disconnected -> connected -> joined -> (joined | disconnected).
    Every handler error is turned into a scoped `error` frame for the
    originating session; nothing raised by a client event escapes the relay.
    """

    def __init__(
        self,
        membership: RoomMembership,
        history: IHistoryStore,
        orchestrator: AIResponseOrchestrator,
        context_size: int = DEFAULT_CONTEXT_MESSAGES,
    ):
        self.membership = membership
        self.history = history
        self.orchestrator = orchestrator
        self.context_size = context_size
        self._states: Dict[str, SessionState] = {}
        self._ai_tasks: Set[asyncio.Task] = set()
        # append + broadcast per room, so broadcast order matches append order
        self._room_locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    # ----------------------------
    # Connection lifecycle
    # ----------------------------

    def connect(self, session_id: str, send: FrameSender) -> Session:
        session = self.membership.register(session_id, send)
        self._states[session_id] = SessionState.CONNECTED
        logger.info(f"Session connected: {session_id}")
        return session

    async def disconnect(self, session_id: str) -> None:
        await self.membership.disconnect(session_id)
        self._states.pop(session_id, None)
        logger.info(f"Session disconnected: {session_id}")

    def state(self, session_id: str) -> SessionState:
        return self._states.get(session_id, SessionState.DISCONNECTED)

    # ----------------------------
    # Event boundary
    # ----------------------------

    async def handle_frame(self, session_id: str, raw: Any) -> None:
        """Dispatch one inbound frame; failures become a scoped error frame."""
        event: Optional[ClientEvent] = None
        try:
            inbound = InboundFrame.model_validate(raw)
            event = inbound.event
            if event == ClientEvent.JOIN:
                await self.join(session_id, RoomPayload.model_validate(inbound.data))
            elif event == ClientEvent.SEND:
                await self.send(session_id, SendPayload.model_validate(inbound.data))
            elif event == ClientEvent.TYPING:
                await self.typing(session_id, TypingPayload.model_validate(inbound.data))
            elif event == ClientEvent.LEAVE:
                await self.leave(session_id)
        except ChatError as e:
            logger.warning(f"Rejected {event.value if event else 'frame'} from {session_id}: {e}")
            await self._error(session_id, e.message)
        except PayloadError as e:
            logger.warning(f"Malformed frame from {session_id}: {e.error_count()} error(s)")
            await self._error(session_id, "Invalid event payload")
        except Exception as e:
            logger.error(f"Error handling {event.value if event else 'frame'} from {session_id}: {e}", exc_info=True)
            await self._error(session_id, _FAILURE_MESSAGES.get(event, "Failed to process event"))

    async def _error(self, session_id: str, message: str) -> None:
        await self.membership.send_to(session_id, ServerEvent.ERROR, {"message": message})

    # ----------------------------
    # Client events
    # ----------------------------

    async def join(self, session_id: str, payload: RoomPayload) -> List[Message]:
        room_id = payload.room_id.strip()
        if not room_id:
            raise ValidationError("Room id is required", parameter="roomId")
        if not payload.user_id.strip() or not payload.user_name.strip():
            raise ValidationError("User id and name are required", parameter="userId")

        # bind quietly first so no broadcast is missed between the history read and the bind
        await self.membership.join(session_id, room_id, payload.user_id, payload.user_name, announce=False)
        try:
            log = await self.history.get_or_create(room_id)
        except ChatError:
            await self.membership.leave(session_id, announce=False)
            self._states[session_id] = SessionState.CONNECTED
            raise

        await self.membership.send_to(
            session_id,
            ServerEvent.HISTORY,
            {"messages": [m.to_wire() for m in log.messages]},
        )
        await self.membership.announce_join(session_id)
        self._states[session_id] = SessionState.JOINED
        return log.messages

    async def send(self, session_id: str, payload: SendPayload) -> Optional[Message]:
        session = self._joined_session(session_id)
        if not payload.text or not payload.text.strip():
            raise ValidationError("Message cannot be empty", parameter="text")

        room_id = session.room_id
        async with self._room_locks[room_id]:
            message = await self.history.append_message(
                room_id, Message.from_user(session.user_id, session.user_name, payload.text)
            )
            await self.membership.broadcast(room_id, ServerEvent.MESSAGE, message.to_wire())
            context = await self.history.recent(room_id, self.context_size)
        logger.info(f"Message in {room_id} from {session.user_name}: {message.text[:50]}")

        self._schedule_ai_response(room_id, context)
        return message

    async def typing(self, session_id: str, payload: TypingPayload) -> None:
        session = self.membership.session(session_id)
        if session is None or session.room_id is None:
            logger.debug(f"Dropping typing signal from unjoined session {session_id}")
            return
        await self.membership.broadcast(
            session.room_id,
            ServerEvent.USER_TYPING,
            {"userId": session.user_id, "userName": session.user_name, "isTyping": payload.is_typing},
            exclude=session_id,
        )

    async def leave(self, session_id: str) -> None:
        await self.membership.leave(session_id)
        if session_id in self._states:
            self._states[session_id] = SessionState.DISCONNECTED

    def _joined_session(self, session_id: str) -> Session:
        session = self.membership.session(session_id)
        if session is None or session.room_id is None or self.state(session_id) != SessionState.JOINED:
            raise ValidationError("Join a room first", parameter="roomId")
        return session

    # ----------------------------
    # AI follow-up
    # ----------------------------

    def _schedule_ai_response(self, room_id: str, context: List[Message]) -> asyncio.Task:
        task = asyncio.create_task(self._respond(room_id, context), name=f"ai-response:{room_id}")
        self._ai_tasks.add(task)
        task.add_done_callback(self._ai_task_done)
        return task

    def _ai_task_done(self, task: asyncio.Task) -> None:
        self._ai_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"AI response task {task.get_name()} failed: {error}", exc_info=error)

    async def _respond(self, room_id: str, context: List[Message]) -> Optional[Message]:
        """Generate, persist, then broadcast the assistant reply; apologise without persisting on failure."""
        try:
            result = await self.orchestrator.respond(context)
        except Exception as e:
            logger.error(f"AI response error in {room_id}: {e}")
            apology = Message.from_assistant(APOLOGY_TEXT)
            await self.membership.broadcast(room_id, ServerEvent.AI_RESPONSE, apology.to_wire())
            return None

        async with self._room_locks[room_id]:
            try:
                reply = await self.history.append_message(room_id, Message.from_assistant(result["text"]))
            except ChatError as e:
                logger.error(f"Failed to persist AI reply in {room_id}: {e}")
                return None
            await self.membership.broadcast(room_id, ServerEvent.AI_RESPONSE, reply.to_wire())
        logger.info(f"AI responded in {room_id} via {result.get('provider')}")
        return reply

    async def drain(self) -> None:
        """Wait for every in-flight AI response."""
        while self._ai_tasks:
            await asyncio.gather(*list(self._ai_tasks), return_exceptions=True)

    async def shutdown(self, timeout: float = 10.0) -> None:
        if not self._ai_tasks:
            return
        logger.info(f"Waiting for {len(self._ai_tasks)} in-flight AI response(s)...")
        try:
            await asyncio.wait_for(self.drain(), timeout)
        except asyncio.TimeoutError:
            for task in list(self._ai_tasks):
                task.cancel()
            logger.warning("Cancelled AI responses still running at shutdown")
