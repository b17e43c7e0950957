"""
Tests for the client session controller against a scripted transport.
"""

import asyncio

import pytest
from websockets.exceptions import InvalidHandshake, ProtocolError

import app.client.transport as transport_module
from app.chat.entity.chat import Message
from app.client.session_controller import ClientSessionController
from app.client.transport import RelayTransport, TransportClosed, WebSocketTransport
from conftest import FakeTypingStore, wait_until


class FakeTransport(RelayTransport):
    def __init__(self):
        self.sent = []
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.closed = False

    async def send(self, payload):
        if self.closed:
            raise TransportClosed("closed")
        self.sent.append(payload)

    async def receive(self):
        item = await self.inbox.get()
        if item is None:
            raise TransportClosed("connection dropped")
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self):
        self.closed = True
        self.inbox.put_nowait(None)

    def push(self, event, data):
        self.inbox.put_nowait({"event": event, "data": data})

    def drop(self):
        self.inbox.put_nowait(None)

    def events(self):
        return [f["event"] for f in self.sent]


class FakeConnector:
    """Hands out scripted transports, then refuses."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.attempts = 0

    async def __call__(self, url):
        self.attempts += 1
        outcome = self.outcomes.pop(0) if self.outcomes else ConnectionRefusedError("refused")
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _with_history(*messages):
    transport = FakeTransport()
    transport.push("history", {"messages": [m.to_wire() for m in messages]})
    return transport


def _controller(connector, **kwargs):
    kwargs.setdefault("reconnect_delay_ms", 0)
    return ClientSessionController("ws://relay/ws/rooms", "R1", "u1", "Alice", connector=connector, **kwargs)


class TestConnect:
    """Tests for connecting, joining and reconnecting"""

    async def test_start_joins_and_loads_history(self):
        earlier = Message.from_user("u2", "Bob", "hi")
        transport = _with_history(earlier)
        controller = _controller(FakeConnector(transport))

        await controller.start()

        assert transport.sent[0] == {
            "event": "join",
            "data": {"roomId": "R1", "userId": "u1", "userName": "Alice"},
        }
        assert controller.connected is True
        assert [m.id for m in controller.messages] == [earlier.id]
        await controller.close()

    async def test_rejoins_after_reconnect(self):
        first = _with_history()
        second = _with_history(Message.from_user("u2", "Bob", "while you were away"))
        connector = FakeConnector(first, second)
        controller = _controller(connector)
        await controller.start()

        first.drop()
        await wait_until(lambda: controller.connected and len(controller.messages) == 1)

        assert connector.attempts == 2
        assert second.events() == ["join"]
        await controller.close()

    async def test_failed_attempts_then_success(self):
        transport = _with_history()
        connector = FakeConnector(ConnectionRefusedError("down"), ConnectionRefusedError("down"), transport)
        controller = _controller(connector, reconnect_attempts=5)

        await controller.start()

        assert controller.connected is True
        assert connector.attempts == 3
        await controller.close()

    async def test_gives_up_after_attempts(self):
        connector = FakeConnector()
        controller = _controller(connector, reconnect_attempts=2)

        await controller.start()

        assert controller.gave_up is True
        assert controller.connected is False
        assert connector.attempts == 3
        await controller.close()

    async def test_rejected_handshake_is_retried(self):
        transport = _with_history()
        connector = FakeConnector(InvalidHandshake("server rejected WebSocket connection: HTTP 502"), transport)
        controller = _controller(connector)

        await controller.start()

        assert controller.connected is True
        assert connector.attempts == 2
        assert transport.events() == ["join"]
        await controller.close()

    async def test_gives_up_after_rejected_handshakes(self):
        rejections = [InvalidHandshake("HTTP 502") for _ in range(3)]
        connector = FakeConnector(*rejections)
        controller = _controller(connector, reconnect_attempts=2)

        await controller.start()

        assert controller.gave_up is True
        assert controller.connected is False
        assert connector.attempts == 3
        await controller.close()

    async def test_protocol_error_reconnects(self):
        first = _with_history()
        second = _with_history(Message.from_user("u2", "Bob", "back again"))
        connector = FakeConnector(first, second)
        controller = _controller(connector)
        await controller.start()

        first.inbox.put_nowait(ProtocolError("unexpected frame"))
        await wait_until(lambda: controller.connected and len(controller.messages) == 1)

        assert connector.attempts == 2
        await controller.close()


class TestEvents:
    """Tests for inbound frame handling"""

    async def test_messages_and_ai_responses_append(self):
        transport = _with_history()
        controller = _controller(FakeConnector(transport))
        await controller.start()

        transport.push("message", Message.from_user("u2", "Bob", "question").to_wire())
        transport.push("aiResponse", Message.from_assistant("answer").to_wire())
        await wait_until(lambda: len(controller.messages) == 2)

        assert [m.text for m in controller.messages] == ["question", "answer"]
        await controller.close()

    async def test_presence_and_errors(self):
        transport = _with_history()
        controller = _controller(FakeConnector(transport))
        await controller.start()

        transport.push("userJoined", {"userId": "u2", "userName": "Bob", "timestamp": "2024-01-01T00:00:00Z"})
        await wait_until(lambda: controller.notice == "Bob joined the room")
        transport.push("userLeft", {"userId": "u2", "userName": "Bob", "timestamp": "2024-01-01T00:00:01Z"})
        await wait_until(lambda: controller.notice == "Bob left the room")
        transport.push("error", {"message": "Message cannot be empty"})
        await wait_until(lambda: controller.last_error == "Message cannot be empty")
        await controller.close()

    async def test_relay_typing_sets_label(self):
        transport = _with_history()
        controller = _controller(FakeConnector(transport))
        await controller.start()

        transport.push("userTyping", {"userId": "u2", "userName": "Bob", "isTyping": True})
        await wait_until(lambda: controller.typing_label == "Bob")

        assert controller.input_locked is True
        await controller.close()

    async def test_store_typing_sets_label(self):
        store = FakeTypingStore()
        controller = _controller(FakeConnector(_with_history()), typing_store=store)
        await controller.start()

        await store.set_typing("R1", "u2", "Bob")
        await wait_until(lambda: controller.typing_label == "Bob")

        await store.clear_typing("R1", "u2")
        await wait_until(lambda: controller.typing_label is None)
        await controller.close()


class TestOutgoing:
    """Tests for sending, typing and closing"""

    async def test_send_message(self):
        transport = _with_history()
        controller = _controller(FakeConnector(transport))
        await controller.start()

        assert await controller.send_message("  hello ") is True

        assert transport.sent[-1] == {
            "event": "send",
            "data": {"roomId": "R1", "userId": "u1", "userName": "Alice", "text": "hello"},
        }
        await controller.close()

    async def test_blank_message_not_sent(self):
        transport = _with_history()
        controller = _controller(FakeConnector(transport))
        await controller.start()

        assert await controller.send_message("   ") is False

        assert transport.events() == ["join"]
        await controller.close()

    async def test_typing_goes_to_store_and_relay(self):
        store = FakeTypingStore()
        transport = _with_history()
        controller = _controller(FakeConnector(transport), typing_store=store)
        await controller.start()

        await controller.set_typing(True)

        assert store.entries["R1"]["u1"]["username"] == "Alice"
        assert transport.sent[-1]["event"] == "typing"
        assert transport.sent[-1]["data"]["isTyping"] is True
        assert controller.typing_label is None
        await controller.close()

    async def test_close_leaves_and_clears_typing(self):
        store = FakeTypingStore()
        transport = _with_history()
        controller = _controller(FakeConnector(transport), typing_store=store)
        await controller.start()
        await controller.set_typing(True)

        await controller.close()
        await controller.close()

        assert store.entries["R1"] == {}
        assert transport.events()[-2:] == ["typing", "leave"]
        assert transport.events().count("leave") == 1
        assert transport.closed is True
        assert controller.connected is False


class TestWebSocketTransport:
    """Tests for opening the websocket transport"""

    async def test_rejected_handshake_raises_transport_closed(self, monkeypatch):
        async def rejecting_connect(url, **kwargs):
            raise InvalidHandshake("server rejected WebSocket connection: HTTP 502")

        monkeypatch.setattr(transport_module, "connect", rejecting_connect)

        with pytest.raises(TransportClosed):
            await WebSocketTransport.open("ws://relay/ws/rooms")
