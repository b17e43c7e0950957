# app/typing/entity/typing.py
from dataclasses import dataclass
from enum import Enum

DEFAULT_DEBOUNCE_MS = 2000
UNKNOWN_TYPIST = "Someone"


class TypingSource(str, Enum):
    """Where a typing signal came from."""
    STORE = "store"   # ephemeral key-value store
    RELAY = "relay"   # room broadcast over the chat relay


@dataclass
class TypingEntry:
    user_id: str
    user_name: str
    source: TypingSource
    signaled_at: float
    expires_at: float

    def is_active(self, now: float) -> bool:
        return now < self.expires_at
