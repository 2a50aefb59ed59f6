"""FirestoreDocumentStore against a mocked firebase-admin client."""
from unittest.mock import MagicMock

import pytest
from firebase_admin import firestore as fb_firestore

from calls.errors import SignalingError
from calls.firebase_service import FirestoreDocumentStore, _snapshot_data

from .conftest import settle


def snapshot(data):
    snap = MagicMock()
    snap.exists = data is not None
    snap.to_dict.return_value = data
    return snap


@pytest.fixture
def db():
    return MagicMock()


@pytest.fixture
def doc_ref(db):
    return db.collection.return_value.document.return_value


class TestFirestoreDocumentStore:

    def test_unavailable_without_client(self, monkeypatch):
        monkeypatch.setattr("calls.firebase_service.get_firestore", lambda: None)
        assert not FirestoreDocumentStore().is_available()

    def test_server_timestamp_sentinel(self, db):
        assert FirestoreDocumentStore(db).server_timestamp() is fb_firestore.SERVER_TIMESTAMP

    @pytest.mark.asyncio
    async def test_get(self, db, doc_ref):
        doc_ref.get.return_value = snapshot({"status": "ringing"})
        store = FirestoreDocumentStore(db)

        assert await store.get("calls", "c1") == {"status": "ringing"}
        db.collection.assert_called_with("calls")
        db.collection.return_value.document.assert_called_with("c1")

    @pytest.mark.asyncio
    async def test_get_missing(self, db, doc_ref):
        doc_ref.get.return_value = snapshot(None)
        assert await FirestoreDocumentStore(db).get("calls", "c1") is None

    @pytest.mark.asyncio
    async def test_set_update_delete(self, db, doc_ref):
        store = FirestoreDocumentStore(db)

        await store.set("incomingCalls", "bob", {"status": "ringing"})
        await store.update("calls", "c1", {"status": "active"})
        await store.delete("incomingCalls", "bob")

        doc_ref.set.assert_called_once_with({"status": "ringing"})
        doc_ref.update.assert_called_once_with({"status": "active"})
        doc_ref.delete.assert_called_once_with()

    @pytest.mark.asyncio
    async def test_sdk_errors_are_wrapped(self, db, doc_ref):
        doc_ref.set.side_effect = RuntimeError("PERMISSION_DENIED")
        with pytest.raises(SignalingError):
            await FirestoreDocumentStore(db).set("calls", "c1", {})

    @pytest.mark.asyncio
    async def test_no_client_is_signaling_error(self, monkeypatch):
        monkeypatch.setattr("calls.firebase_service.get_firestore", lambda: None)
        with pytest.raises(SignalingError):
            await FirestoreDocumentStore().get("calls", "c1")

    @pytest.mark.asyncio
    async def test_transition_applies_when_allowed(self, db, doc_ref, monkeypatch):
        monkeypatch.setattr(fb_firestore, "transactional", lambda fn: fn)
        doc_ref.get.return_value = snapshot({"status": "ringing"})
        transaction = db.transaction.return_value

        await FirestoreDocumentStore(db).transition(
            "calls", "c1", ("ringing",), lambda current: {"status": "active"}
        )

        transaction.update.assert_called_once_with(doc_ref, {"status": "active"})

    @pytest.mark.asyncio
    async def test_transition_skips_other_status(self, db, doc_ref, monkeypatch):
        monkeypatch.setattr(fb_firestore, "transactional", lambda fn: fn)
        doc_ref.get.return_value = snapshot({"status": "ended"})
        transaction = db.transaction.return_value

        result = await FirestoreDocumentStore(db).transition("calls", "c1", ("ringing",), {"status": "missed"})

        transaction.update.assert_not_called()
        assert result == {"status": "ended"}

    @pytest.mark.asyncio
    async def test_transition_missing_document(self, db, doc_ref, monkeypatch):
        monkeypatch.setattr(fb_firestore, "transactional", lambda fn: fn)
        doc_ref.get.return_value = snapshot(None)

        assert await FirestoreDocumentStore(db).transition("calls", "c1", ("ringing",), {}) is None

    @pytest.mark.asyncio
    async def test_subscribe_delivers_on_loop(self, db, doc_ref):
        seen = []
        unsubscribe = FirestoreDocumentStore(db).subscribe("calls", "c1", seen.append)

        callback = doc_ref.on_snapshot.call_args[0][0]
        callback([snapshot({"status": "active"})], [], None)
        callback([snapshot(None)], [], None)
        await settle()
        unsubscribe()

        assert seen == [{"status": "active"}, None]
        doc_ref.on_snapshot.return_value.unsubscribe.assert_called_once_with()


def test_snapshot_data_empty():
    assert _snapshot_data([]) is None
