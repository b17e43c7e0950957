# app/relay/entity/events.py
"""
Relay wire contract.

Every frame in either direction is a JSON object {"event": <name>, "data": {...}}.
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ClientEvent(str, Enum):
    JOIN = "join"
    SEND = "send"
    TYPING = "typing"
    LEAVE = "leave"


class ServerEvent(str, Enum):
    HISTORY = "history"
    MESSAGE = "message"
    AI_RESPONSE = "aiResponse"
    USER_TYPING = "userTyping"
    USER_JOINED = "userJoined"
    USER_LEFT = "userLeft"
    ERROR = "error"


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    JOINED = "joined"


def frame(event: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    name = event.value if isinstance(event, Enum) else event
    return {"event": name, "data": data or {}}


class _Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class RoomPayload(_Payload):
    """join / leave"""
    room_id: str = ""
    user_id: str = ""
    user_name: str = ""


class SendPayload(RoomPayload):
    text: str = ""


class TypingPayload(RoomPayload):
    is_typing: bool = False


class InboundFrame(BaseModel):
    event: ClientEvent
    data: Dict[str, Any] = Field(default_factory=dict)
