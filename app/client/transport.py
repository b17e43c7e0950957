# app/client/transport.py
import json
from abc import ABC, abstractmethod
from typing import Any, Dict

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake


class TransportClosed(ConnectionError):
    """The relay connection went away."""


class RelayTransport(ABC):
    """One open connection to the chat relay, exchanging JSON frames."""

    @abstractmethod
    async def send(self, payload: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def receive(self) -> Dict[str, Any]:
        """Next frame from the server; raises TransportClosed when the connection ends."""
        pass

    @abstractmethod
    async def close(self) -> None:
        pass


class WebSocketTransport(RelayTransport):
    def __init__(self, connection: ClientConnection):
        self._connection = connection

    @classmethod
    async def open(cls, url: str, open_timeout: float = 10.0) -> "WebSocketTransport":
        try:
            connection = await connect(url, open_timeout=open_timeout)
        except InvalidHandshake as e:
            raise TransportClosed(f"Handshake rejected: {e}") from e
        return cls(connection)

    async def send(self, payload: Dict[str, Any]) -> None:
        try:
            await self._connection.send(json.dumps(payload))
        except ConnectionClosed as e:
            raise TransportClosed(str(e)) from e

    async def receive(self) -> Dict[str, Any]:
        try:
            raw = await self._connection.recv()
        except ConnectionClosed as e:
            raise TransportClosed(str(e)) from e
        return json.loads(raw)

    async def close(self) -> None:
        await self._connection.close()
