import asyncio
from typing import Any, Dict, List, Optional, Set

from app.chat.entity.chat import utcnow
from app.core.logger import get_logger
from app.relay.entity.events import ServerEvent, frame
from app.room.entity.session import FrameSender, Session

logger = get_logger("RoomMembership")


class RoomMembership:
    """
    In-memory presence: which session is in which room.

    Keeps a session -> Session map and a room -> session ids reverse index for
    targeted broadcast. Nothing here survives a restart; clients re-join on
    reconnect.
    """

    def __init__(self):
        self._sessions: Dict[str, Session] = {}
        self._rooms: Dict[str, Set[str]] = {}

    # ----------------------------
    # Connection lifecycle
    # ----------------------------

    def register(self, session_id: str, send: FrameSender) -> Session:
        session = Session(session_id=session_id, send=send)
        self._sessions[session_id] = session
        return session

    async def join(self, session_id: str, room_id: str, user_id: str, user_name: str, announce: bool = True) -> Session:
        """Bind session to room_id (last join wins) and, unless announce is False, tell the other members."""
        session = self._sessions.get(session_id)
        if session is None:
            raise KeyError(f"Unknown session {session_id}")

        if session.room_id is not None and session.room_id != room_id:
            await self.leave(session_id)

        session.room_id = room_id
        session.user_id = user_id
        session.user_name = user_name
        self._rooms.setdefault(room_id, set()).add(session_id)
        logger.info(f"{user_name} joined room: {room_id}")

        if announce:
            await self.announce_join(session_id)
        return session

    async def announce_join(self, session_id: str) -> int:
        session = self._sessions.get(session_id)
        if session is None or session.room_id is None:
            return 0
        return await self.broadcast(
            session.room_id,
            ServerEvent.USER_JOINED,
            self._presence_payload(session),
            exclude=session_id,
        )

    async def leave(self, session_id: str, announce: bool = True) -> Optional[str]:
        """Unbind session from its room; returns the room it left, or None if unbound."""
        session = self._sessions.get(session_id)
        if session is None or session.room_id is None:
            return None

        room_id = session.room_id
        members = self._rooms.get(room_id)
        if members is not None:
            members.discard(session_id)
            if not members:
                del self._rooms[room_id]
        session.room_id = None
        logger.info(f"{session.user_name} left room: {room_id}")

        if announce:
            await self.broadcast(room_id, ServerEvent.USER_LEFT, self._presence_payload(session))
        return room_id

    async def disconnect(self, session_id: str) -> Optional[str]:
        """Implicit leave, then forget the session."""
        room_id = await self.leave(session_id)
        self._sessions.pop(session_id, None)
        return room_id

    # ----------------------------
    # Delivery
    # ----------------------------

    async def broadcast(self, room_id: str, event: ServerEvent, data: Dict[str, Any], exclude: Optional[str] = None) -> int:
        """Send one frame to every session in room_id. Returns the number delivered."""
        targets = [
            self._sessions[sid]
            for sid in list(self._rooms.get(room_id, ()))
            if sid != exclude and sid in self._sessions
        ]
        if not targets:
            return 0

        payload = frame(event, data)
        results = await asyncio.gather(*(s.deliver(payload) for s in targets), return_exceptions=True)
        delivered = 0
        for session, result in zip(targets, results):
            if isinstance(result, Exception):
                logger.warning(f"Failed to deliver {payload['event']} to session {session.session_id}: {result}")
            else:
                delivered += 1
        return delivered

    async def send_to(self, session_id: str, event: ServerEvent, data: Dict[str, Any]) -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            return False
        try:
            await session.deliver(frame(event, data))
            return True
        except Exception as e:
            logger.warning(f"Failed to deliver {event.value} to session {session_id}: {e}")
            return False

    # ----------------------------
    # Lookups
    # ----------------------------

    def session(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def room_of(self, session_id: str) -> Optional[str]:
        session = self._sessions.get(session_id)
        return session.room_id if session else None

    def members(self, room_id: str) -> List[Session]:
        return [self._sessions[sid] for sid in self._rooms.get(room_id, ()) if sid in self._sessions]

    @staticmethod
    def _presence_payload(session: Session) -> Dict[str, Any]:
        return {
            "userId": session.user_id,
            "userName": session.user_name,
            "timestamp": utcnow().isoformat(),
        }
