# app/chat/entity/chat.py
"""
Models for room messages and chat logs.
Field names serialize in camelCase to match the relay wire format.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

ASSISTANT_LABEL = "Assistant"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Sender(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class Message(WireModel):
    """A single immutable message in a room's chat log."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    sender: Sender
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    text: str
    timestamp: datetime = Field(default_factory=utcnow)

    @model_validator(mode="before")
    @classmethod
    def _drop_assistant_identity(cls, data):
        # assistant messages never carry a participant identity
        if isinstance(data, dict) and data.get("sender") in (Sender.ASSISTANT, Sender.ASSISTANT.value):
            data = {k: v for k, v in data.items() if k not in ("user_id", "userId", "user_name", "userName")}
        return data

    @model_validator(mode="after")
    def _check_sender_identity(self) -> "Message":
        if self.sender == Sender.USER:
            if not (self.user_id and self.user_id.strip()) or not (self.user_name and self.user_name.strip()):
                raise ValueError("user messages require a non-empty userId and userName")
        return self

    @classmethod
    def from_user(cls, user_id: str, user_name: str, text: str) -> "Message":
        return cls(sender=Sender.USER, user_id=user_id, user_name=user_name, text=text.strip())

    @classmethod
    def from_assistant(cls, text: str) -> "Message":
        return cls(sender=Sender.ASSISTANT, text=text)

    def not_before(self, floor: Optional[datetime]) -> "Message":
        """Copy stamped no earlier than floor; self when already in order."""
        if floor is None or self.timestamp >= floor:
            return self
        return self.model_copy(update={"timestamp": floor})

    @property
    def speaker(self) -> str:
        return self.user_name if self.sender == Sender.USER else ASSISTANT_LABEL


class ChatLog(WireModel):
    """Ordered, append-only message history for one room."""

    room_id: str
    messages: List[Message] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def total_messages(self) -> int:
        return len(self.messages)

    def recent(self, limit: int) -> List[Message]:
        if limit <= 0:
            return []
        return list(self.messages[-limit:])


class ChatStats(WireModel):
    total_messages: int = 0
    user_messages: int = 0
    ai_messages: int = 0
    last_activity: Optional[datetime] = None

    @classmethod
    def from_log(cls, log: Optional[ChatLog]) -> "ChatStats":
        if log is None:
            return cls()
        user_count = sum(1 for m in log.messages if m.sender == Sender.USER)
        last = log.messages[-1].timestamp if log.messages else log.created_at
        return cls(
            total_messages=len(log.messages),
            user_messages=user_count,
            ai_messages=len(log.messages) - user_count,
            last_activity=last,
        )

    def to_wire(self) -> dict:
        # lastActivity is reported as null rather than omitted
        return self.model_dump(by_alias=True, mode="json")
