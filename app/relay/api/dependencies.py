from typing import Union
from fastapi import Request, WebSocket

from app.core.errors import RelayNotInitializedError
from app.relay.service.relay import ChatRelay


def install_chat_relay(app, relay: ChatRelay) -> ChatRelay:
    """Register the process-wide relay during startup."""
    app.state.chat_relay = relay
    return relay


def get_chat_relay(connection: Union[Request, WebSocket]) -> ChatRelay:
    """Dependency to get the chat relay from app.state; fails loudly before startup wired it."""
    relay = getattr(connection.app.state, "chat_relay", None)
    if relay is None:
        raise RelayNotInitializedError("Chat relay not initialized. Ensure main.py startup wires app.state.chat_relay")
    return relay
