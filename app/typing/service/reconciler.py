# app/typing/service/reconciler.py
"""
Typing indicator state for one observing participant.

Typing signals reach an observer over two independent, unordered channels:
the ephemeral store (snapshots of the room's typing map) and the chat relay
(`userTyping` broadcasts). Neither is authoritative. Both feed the same
reducer, which keeps the most recent signal per user; the displayed label is
the other participant whose active signal is newest. A brief stale indicator
when the channels disagree is accepted in exchange for latency.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from app.core.logger import get_logger
from app.typing.entity.typing import DEFAULT_DEBOUNCE_MS, UNKNOWN_TYPIST, TypingEntry, TypingSource
from app.typing.repository.typing_store import ITypingStore

logger = get_logger("TypingReconciler")

Clock = Callable[[], float]


class TypingReconciler:
    def __init__(self, self_user_id: Optional[str], debounce_ms: int = DEFAULT_DEBOUNCE_MS, clock: Clock = time.monotonic):
        self.self_user_id = self_user_id
        self.debounce = debounce_ms / 1000
        self.clock = clock
        self._entries: Dict[str, TypingEntry] = {}

    def apply(self, source: TypingSource, user_id: str, user_name: Optional[str], is_typing: bool) -> Optional[str]:
        """Fold one signal from either channel into the view; returns the label to display."""
        if not user_id or user_id == self.self_user_id:
            return self.current_label()

        now = self.clock()
        if is_typing:
            self._entries[user_id] = TypingEntry(
                user_id=user_id,
                user_name=user_name or UNKNOWN_TYPIST,
                source=source,
                signaled_at=now,
                expires_at=now + self.debounce,
            )
        else:
            self._entries.pop(user_id, None)
        return self.current_label()

    def apply_relay(self, payload: Mapping[str, Any]) -> Optional[str]:
        """Apply a `userTyping` frame body."""
        return self.apply(
            TypingSource.RELAY,
            payload.get("userId"),
            payload.get("userName"),
            bool(payload.get("isTyping")),
        )

    def apply_snapshot(self, snapshot: Mapping[str, Mapping[str, Any]]) -> Optional[str]:
        """
        Apply the full typing map read from the ephemeral store.

        Users present and marked typing are activated. A user whose live entry
        already came from the store only has its expiry extended, so a
        snapshot triggered by someone else never makes them the newest typist.
        Users missing from the map are cleared only if their latest signal also
        came from the store; a newer relay signal is left to its own stop or expiry.
        """
        now = self.clock()
        live = {uid: rec for uid, rec in snapshot.items() if rec and rec.get("isTyping", True)}
        for user_id, entry in list(self._entries.items()):
            if entry.source == TypingSource.STORE and user_id not in live:
                del self._entries[user_id]
        for user_id, record in live.items():
            entry = self._entries.get(user_id)
            if entry is not None and entry.source == TypingSource.STORE and entry.is_active(now):
                entry.expires_at = now + self.debounce
                continue
            self.apply(TypingSource.STORE, user_id, record.get("username"), True)
        return self.current_label()

    def _prune(self) -> None:
        now = self.clock()
        for user_id in [uid for uid, e in self._entries.items() if not e.is_active(now)]:
            del self._entries[user_id]

    def active(self) -> List[TypingEntry]:
        """Active typists other than self, newest signal first."""
        self._prune()
        return sorted(self._entries.values(), key=lambda e: e.signaled_at, reverse=True)

    def current_label(self) -> Optional[str]:
        entries = self.active()
        return entries[0].user_name if entries else None

    @property
    def input_locked(self) -> bool:
        # advisory only; two users can still start within the same debounce window
        return bool(self.active())

    def reset(self) -> None:
        self._entries.clear()


class TypingIndicator:
    """
    Local participant's typing signal, written to both channels.

    Every keystroke marks the user typing in the store and on the relay and
    restarts the debounce timer; when it fires, or on stop(), both channels
    are cleared. Failures on either channel are logged and otherwise ignored.
    """

    def __init__(
        self,
        room_id: str,
        user_id: str,
        user_name: str,
        store: Optional[ITypingStore],
        emit_relay: Callable[[bool], Awaitable[None]],
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
    ):
        self.room_id = room_id
        self.user_id = user_id
        self.user_name = user_name
        self.store = store
        self.emit_relay = emit_relay
        self.debounce = debounce_ms / 1000
        self._timer: Optional[asyncio.Task] = None
        self.is_typing = False

    async def keystroke(self) -> None:
        self._cancel_timer()
        self.is_typing = True
        await self._signal(True)
        self._timer = asyncio.create_task(self._expire())

    async def stop(self) -> None:
        self._cancel_timer()
        await self._clear()

    async def _expire(self) -> None:
        await asyncio.sleep(self.debounce)
        self._timer = None
        await self._clear()

    async def _clear(self) -> None:
        self.is_typing = False
        await self._signal(False)

    async def _signal(self, is_typing: bool) -> None:
        if self.store is not None:
            try:
                if is_typing:
                    await self.store.set_typing(self.room_id, self.user_id, self.user_name)
                else:
                    await self.store.clear_typing(self.room_id, self.user_id)
            except Exception as e:
                logger.warning(f"Typing store update failed for {self.user_id} in {self.room_id}: {e}")
        try:
            await self.emit_relay(is_typing)
        except Exception as e:
            logger.warning(f"Typing relay signal failed for {self.user_id} in {self.room_id}: {e}")

    def _cancel_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None
