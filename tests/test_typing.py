"""
Tests for typing presence: the two-channel reconciler, the local typing
indicator and the Redis-backed typing store.
"""

import asyncio
import fnmatch

from app.typing.entity.typing import TypingSource
from app.typing.repository.typing_store import RedisTypingStore
from app.typing.service.reconciler import TypingIndicator, TypingReconciler
from conftest import FakeTypingStore, wait_until


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRedisClient:
    """Just enough of RedisClient for RedisTypingStore."""

    def __init__(self):
        self.values = {}
        self.expiry = {}
        self.published = []

    async def async_set_value(self, key, value, expiry=None):
        self.values[key] = value
        self.expiry[key] = expiry
        return True

    async def async_delete(self, *keys):
        removed = 0
        for key in keys:
            removed += self.values.pop(key, None) is not None
        return removed

    async def async_get_matching(self, pattern):
        return {k: v for k, v in self.values.items() if fnmatch.fnmatchcase(k, pattern)}

    async def async_publish(self, channel, message):
        self.published.append((channel, message))
        return 1


class TestTypingReconciler:
    """Tests for merging store and relay typing signals"""

    def test_relay_signal_shows_label(self):
        reconciler = TypingReconciler("me", clock=FakeClock())

        label = reconciler.apply_relay({"userId": "u2", "userName": "Bob", "isTyping": True})

        assert label == "Bob"
        assert reconciler.input_locked is True

    def test_own_signal_is_ignored(self):
        reconciler = TypingReconciler("me", clock=FakeClock())

        reconciler.apply_relay({"userId": "me", "userName": "Me", "isTyping": True})
        reconciler.apply_snapshot({"me": {"username": "Me", "isTyping": True}})

        assert reconciler.current_label() is None
        assert reconciler.input_locked is False

    def test_entry_expires_after_debounce(self):
        clock = FakeClock()
        reconciler = TypingReconciler("me", debounce_ms=2000, clock=clock)
        reconciler.apply_relay({"userId": "u2", "userName": "Bob", "isTyping": True})

        clock.advance(1.9)
        assert reconciler.current_label() == "Bob"

        clock.advance(0.1)
        assert reconciler.current_label() is None

    def test_newest_signal_wins(self):
        clock = FakeClock()
        reconciler = TypingReconciler("me", clock=clock)
        reconciler.apply_relay({"userId": "u2", "userName": "Bob", "isTyping": True})
        clock.advance(0.5)
        reconciler.apply_snapshot({"u3": {"username": "Carol", "isTyping": True}})

        assert reconciler.current_label() == "Carol"

        reconciler.apply_relay({"userId": "u3", "userName": "Carol", "isTyping": False})
        assert reconciler.current_label() == "Bob"

    def test_stop_from_either_channel_clears(self):
        reconciler = TypingReconciler("me", clock=FakeClock())
        reconciler.apply_snapshot({"u2": {"username": "Bob", "isTyping": True}})

        reconciler.apply(TypingSource.RELAY, "u2", "Bob", False)

        assert reconciler.current_label() is None

    def test_snapshot_absence_clears_store_entries_only(self):
        clock = FakeClock()
        reconciler = TypingReconciler("me", clock=clock)
        reconciler.apply_snapshot({"u2": {"username": "Bob", "isTyping": True}})
        reconciler.apply_relay({"userId": "u3", "userName": "Carol", "isTyping": True})

        reconciler.apply_snapshot({})

        assert [e.user_id for e in reconciler.active()] == ["u3"]

    def test_snapshot_ignores_not_typing_records(self):
        reconciler = TypingReconciler("me", clock=FakeClock())

        reconciler.apply_snapshot({"u2": {"username": "Bob", "isTyping": False}})

        assert reconciler.current_label() is None

    def test_unchanged_store_entry_does_not_become_newest(self):
        clock = FakeClock()
        reconciler = TypingReconciler("me", clock=clock)
        reconciler.apply_snapshot({"u2": {"username": "Xavier", "isTyping": True}})
        clock.advance(0.5)
        reconciler.apply_relay({"userId": "u3", "userName": "Yara", "isTyping": True})
        clock.advance(0.1)

        label = reconciler.apply_snapshot({
            "u2": {"username": "Xavier", "isTyping": True},
            "u3": {"username": "Yara", "isTyping": True},
        })

        assert label == "Yara"
        assert [e.user_id for e in reconciler.active()] == ["u3", "u2"]

    def test_repeated_snapshot_extends_store_entry(self):
        clock = FakeClock()
        reconciler = TypingReconciler("me", debounce_ms=2000, clock=clock)
        reconciler.apply_snapshot({"u2": {"username": "Xavier", "isTyping": True}})
        clock.advance(1.5)

        reconciler.apply_snapshot({"u2": {"username": "Xavier", "isTyping": True}})
        clock.advance(1.5)

        assert reconciler.current_label() == "Xavier"
        assert reconciler.active()[0].signaled_at == 1000.0

    def test_missing_name_falls_back(self):
        reconciler = TypingReconciler("me", clock=FakeClock())

        assert reconciler.apply_relay({"userId": "u2", "isTyping": True}) == "Someone"

    def test_reset(self):
        reconciler = TypingReconciler("me", clock=FakeClock())
        reconciler.apply_relay({"userId": "u2", "userName": "Bob", "isTyping": True})

        reconciler.reset()

        assert reconciler.active() == []


class TestTypingIndicator:
    """Tests for the local participant's typing signal"""

    @staticmethod
    def _indicator(store, debounce_ms=50):
        relayed = []

        async def emit(is_typing):
            relayed.append(is_typing)

        indicator = TypingIndicator("R1", "u1", "Alice", store, emit, debounce_ms=debounce_ms)
        return indicator, relayed

    async def test_keystroke_signals_both_channels(self):
        store = FakeTypingStore()
        indicator, relayed = self._indicator(store)

        await indicator.keystroke()

        assert store.entries["R1"]["u1"] == {"username": "Alice", "isTyping": True}
        assert relayed == [True]
        assert indicator.is_typing is True
        await indicator.stop()

    async def test_debounce_expiry_clears_both_channels(self):
        store = FakeTypingStore()
        indicator, relayed = self._indicator(store)

        await indicator.keystroke()
        await wait_until(lambda: relayed == [True, False])

        assert store.entries["R1"] == {}
        assert indicator.is_typing is False

    async def test_keystrokes_restart_the_timer(self):
        store = FakeTypingStore()
        indicator, relayed = self._indicator(store, debounce_ms=100)

        await indicator.keystroke()
        await asyncio.sleep(0.06)
        await indicator.keystroke()
        await asyncio.sleep(0.06)

        assert relayed == [True, True]
        await wait_until(lambda: relayed == [True, True, False])

    async def test_stop_clears_immediately(self):
        store = FakeTypingStore()
        indicator, relayed = self._indicator(store, debounce_ms=10_000)
        await indicator.keystroke()

        await indicator.stop()

        assert relayed == [True, False]
        assert ("clear", "R1", "u1") in store.calls

    async def test_store_failure_still_relays(self):
        store = FakeTypingStore()
        store.fail = True
        indicator, relayed = self._indicator(store)

        await indicator.keystroke()
        await indicator.stop()

        assert relayed == [True, False]

    async def test_works_without_store(self):
        indicator, relayed = self._indicator(None)

        await indicator.keystroke()
        await indicator.stop()

        assert relayed == [True, False]


class TestRedisTypingStore:
    """Tests for key layout and snapshots of the Redis typing store"""

    async def test_set_typing_writes_key_with_ttl_and_publishes(self):
        redis = FakeRedisClient()
        store = RedisTypingStore(redis, debounce_ms=2000)

        await store.set_typing("R1", "u1", "Alice")

        assert redis.values["rooms:R1:typing:u1"] == {"username": "Alice", "isTyping": True}
        assert redis.expiry["rooms:R1:typing:u1"] == 2000
        assert redis.published == [("rooms:R1:typing", {"userId": "u1", "isTyping": True})]

    async def test_snapshot_is_scoped_to_room(self):
        redis = FakeRedisClient()
        store = RedisTypingStore(redis)
        await store.set_typing("R1", "u1", "Alice")
        await store.set_typing("R1", "u2", "Bob")
        await store.set_typing("R2", "u3", "Carol")

        snapshot = await store.snapshot("R1")

        assert snapshot == {
            "u1": {"username": "Alice", "isTyping": True},
            "u2": {"username": "Bob", "isTyping": True},
        }

    async def test_clear_typing(self):
        redis = FakeRedisClient()
        store = RedisTypingStore(redis)
        await store.set_typing("R1", "u1", "Alice")

        await store.clear_typing("R1", "u1")

        assert await store.snapshot("R1") == {}
        assert redis.published[-1] == ("rooms:R1:typing", {"userId": "u1", "isTyping": False})

    def test_room_pattern_escapes_glob_characters(self):
        store = RedisTypingStore(FakeRedisClient())

        assert store._room_pattern("a*b") == "rooms:a\\*b:typing:*"
