"""Signaling channel over the in-memory document store."""
import asyncio

import pytest

from calls.constants import CALLS_COLLECTION, STATUS_ACTIVE, STATUS_ENDED, STATUS_MISSED, STATUS_RINGING
from calls.errors import SignalingError
from calls.memory_store import MemoryDocumentStore
from calls.models import SessionRecord
from calls.signaling import SignalingChannel

from .conftest import settle


def make_record(**fields):
    data = dict(channel_id="call_alice_bob", caller_id="alice", receiver_id="bob", caller_name="Alice")
    data.update(fields)
    return SessionRecord(**data)


class TestMemoryDocumentStore:

    @pytest.mark.asyncio
    async def test_reads_are_copies(self):
        store = MemoryDocumentStore()
        await store.set("things", "1", {"tags": ["a"]})

        doc = await store.get("things", "1")
        doc["tags"].append("b")

        assert store.peek("things", "1") == {"tags": ["a"]}

    @pytest.mark.asyncio
    async def test_delete_missing_is_noop(self):
        store = MemoryDocumentStore()
        await store.delete("things", "missing")

    @pytest.mark.asyncio
    async def test_update_missing_raises(self):
        store = MemoryDocumentStore()
        with pytest.raises(KeyError):
            await store.update("things", "missing", {"a": 1})

    @pytest.mark.asyncio
    async def test_transition_compare_and_set(self):
        store = MemoryDocumentStore()
        await store.set("calls", "c", {"status": STATUS_RINGING})

        doc = await store.transition("calls", "c", (STATUS_RINGING,), {"status": STATUS_ACTIVE})
        assert doc["status"] == STATUS_ACTIVE

        doc = await store.transition("calls", "c", (STATUS_RINGING,), {"status": STATUS_MISSED})
        assert doc["status"] == STATUS_ACTIVE

        assert await store.transition("calls", "gone", (STATUS_RINGING,), {"status": STATUS_ENDED}) is None

    @pytest.mark.asyncio
    async def test_subscribe_delivers_current_then_changes(self):
        store = MemoryDocumentStore()
        await store.set("calls", "c", {"status": STATUS_RINGING})
        seen = []

        unsubscribe = store.subscribe("calls", "c", seen.append)
        await settle()
        await store.update("calls", "c", {"status": STATUS_ACTIVE})
        await settle()
        await store.delete("calls", "c")
        await settle()
        unsubscribe()
        await store.set("calls", "c", {"status": STATUS_RINGING})
        await settle()

        assert seen == [{"status": STATUS_RINGING}, {"status": STATUS_ACTIVE}, None]
        assert ("calls", "c") not in store._listeners


class TestSignalingChannel:

    @pytest.mark.asyncio
    async def test_create_and_read(self):
        signaling = SignalingChannel(MemoryDocumentStore())
        await signaling.create_session(make_record())

        record = await signaling.read_session("call_alice_bob")

        assert record.status == STATUS_RINGING
        assert record.created_at is not None
        assert record.answered_at is None

    @pytest.mark.asyncio
    async def test_mark_active_keeps_first_answer_time(self):
        signaling = SignalingChannel(MemoryDocumentStore())
        await signaling.create_session(make_record())

        first = await signaling.mark_active("call_alice_bob")
        await asyncio.sleep(0.01)
        second = await signaling.mark_active("call_alice_bob")

        assert first.status == STATUS_ACTIVE
        assert second.answered_at == first.answered_at

    @pytest.mark.asyncio
    async def test_mark_terminal_records_duration(self):
        store = MemoryDocumentStore()
        signaling = SignalingChannel(store)
        await signaling.create_session(make_record())
        await signaling.mark_active("call_alice_bob")

        record = await signaling.mark_terminal("call_alice_bob", STATUS_ENDED)

        assert record.status == STATUS_ENDED
        assert record.ended_at is not None
        assert record.duration_sec == 0

    @pytest.mark.asyncio
    async def test_missed_only_from_ringing(self):
        signaling = SignalingChannel(MemoryDocumentStore())
        await signaling.create_session(make_record())
        await signaling.mark_active("call_alice_bob")

        record = await signaling.mark_terminal("call_alice_bob", STATUS_MISSED, allowed_from=(STATUS_RINGING,))

        assert record.status == STATUS_ACTIVE

    @pytest.mark.asyncio
    async def test_mark_terminal_on_deleted_record(self):
        signaling = SignalingChannel(MemoryDocumentStore())
        assert await signaling.mark_terminal("call_alice_bob", STATUS_ENDED) is None

    @pytest.mark.asyncio
    async def test_inbox_round_trip(self):
        signaling = SignalingChannel(MemoryDocumentStore())
        await signaling.write_inbox("bob", make_record(emergency_id="em-1"))

        inbox = await signaling.read_inbox("bob")
        assert inbox.channel_id == "call_alice_bob"
        assert inbox.emergency_id == "em-1"
        assert inbox.status == STATUS_RINGING

        await signaling.delete_inbox("bob")
        assert await signaling.read_inbox("bob") is None

    @pytest.mark.asyncio
    async def test_store_errors_become_signaling_errors(self):
        class BrokenStore(MemoryDocumentStore):
            async def set(self, collection, doc_id, data):
                raise TimeoutError("deadline exceeded")

        signaling = SignalingChannel(BrokenStore())
        with pytest.raises(SignalingError):
            await signaling.create_session(make_record())

    @pytest.mark.asyncio
    async def test_watch_session_typed(self):
        store = MemoryDocumentStore()
        signaling = SignalingChannel(store)
        seen = []

        signaling.watch_session("call_alice_bob", seen.append)
        await settle()
        await signaling.create_session(make_record())
        await settle()

        assert seen[0] is None
        assert seen[1].caller_id == "alice"
        assert store.peek(CALLS_COLLECTION, "call_alice_bob")["status"] == STATUS_RINGING

    @pytest.mark.asyncio
    async def test_listener_failures_become_signaling_errors(self):
        class NoListenStore(MemoryDocumentStore):
            def subscribe(self, collection, doc_id, on_change):
                raise RuntimeError("listen stream closed")

        signaling = SignalingChannel(NoListenStore())
        with pytest.raises(SignalingError):
            signaling.watch_session("call_alice_bob", lambda record: None)
        with pytest.raises(SignalingError):
            signaling.watch_inbox("bob", lambda inbox: None)
