"""
Firebase service - Firestore as the shared signaling store.

Firestore Collections:
- calls/{channelId}: Session Records with status, participants, timestamps
- incomingCalls/{receiverId}: Inbox Records announcing a ringing call
- responders/{uid}, users/{uid}: profile documents
"""
import asyncio
import json
import logging
import os
from typing import Any, Iterable, Optional

from .errors import SignalingError
from .store import ChangeCallback, Document, DocumentStore, TransitionFields, Unsubscribe, resolve_fields

logger = logging.getLogger("calls")

_firebase_app = None
_firestore_client = None
_firebase_init_attempted = False


def _credentials():
    """Service account from FIREBASE_SERVICE_ACCOUNT (JSON) or FIREBASE_SERVICE_ACCOUNT_PATH."""
    from firebase_admin import credentials

    raw = os.environ.get("FIREBASE_SERVICE_ACCOUNT")
    if raw:
        try:
            return credentials.Certificate(json.loads(raw))
        except json.JSONDecodeError as e:
            logger.error(f"[FIREBASE] Invalid FIREBASE_SERVICE_ACCOUNT JSON: {e}")
            return None

    path = os.environ.get("FIREBASE_SERVICE_ACCOUNT_PATH")
    if path and os.path.exists(path):
        return credentials.Certificate(path)
    return None


def get_firebase_app():
    """Initialize the Firebase Admin app once per process; None when unconfigured."""
    global _firebase_app, _firebase_init_attempted

    if _firebase_app is not None or _firebase_init_attempted:
        return _firebase_app
    _firebase_init_attempted = True

    import firebase_admin

    if os.environ.get("FIREBASE_USE_EMULATOR", "false").lower() == "true":
        # The Firestore client reads FIRESTORE_EMULATOR_HOST when it is created
        host = os.environ.setdefault("FIRESTORE_EMULATOR_HOST", "localhost:8080")
        options = {"projectId": os.environ.get("FIREBASE_PROJECT_ID") or "demo-project"}
        cred = None
        logger.info(f"[FIREBASE] Using emulator at {host}")
    else:
        options = None
        cred = _credentials()
        if cred is None:
            logger.warning("[FIREBASE] No credentials configured; Firestore signaling is unavailable")
            return None

    try:
        _firebase_app = firebase_admin.initialize_app(credential=cred, options=options)
    except ValueError:
        # Another part of the process initialized the default app first
        _firebase_app = firebase_admin.get_app()
    except Exception as e:
        logger.error(f"[FIREBASE] Init failed: {e}")
        return None

    logger.info("[FIREBASE] Admin app initialized")
    return _firebase_app


def get_firestore():
    global _firestore_client

    if _firestore_client is not None:
        return _firestore_client

    if get_firebase_app() is None:
        return None

    from firebase_admin import firestore

    try:
        _firestore_client = firestore.client()
    except Exception as e:
        logger.error(f"[FIREBASE] Firestore client failed: {e}")
        return None
    return _firestore_client


def verify_id_token(id_token: str) -> Optional[str]:
    """Return the uid of a Firebase ID token, or None if it does not verify."""
    if get_firebase_app() is None:
        return None

    from firebase_admin import auth

    try:
        decoded = auth.verify_id_token(id_token)
        return decoded.get("uid")
    except Exception as e:
        logger.warning(f"[AUTH] ID token rejected: {e}")
        return None


def _snapshot_data(docs) -> Optional[Document]:
    if not docs:
        return None
    snapshot = docs[0]
    if not snapshot.exists:
        return None
    return snapshot.to_dict()


class FirestoreDocumentStore(DocumentStore):
    """
    DocumentStore over the firebase-admin Firestore client.

    The SDK is blocking, so each operation runs in a worker thread. Snapshot
    listeners fire on the SDK's watch thread and are handed back to the
    event loop that subscribed.
    """

    name = "firestore"

    def __init__(self, db=None):
        self._db = db

    @property
    def db(self):
        """Lazy initialization of Firestore client"""
        if self._db is None:
            self._db = get_firestore()
        return self._db

    def is_available(self) -> bool:
        return self.db is not None

    def server_timestamp(self) -> Any:
        from firebase_admin import firestore
        return firestore.SERVER_TIMESTAMP

    def _doc(self, collection: str, doc_id: str):
        if not self.db:
            raise SignalingError("Firestore not available")
        return self.db.collection(collection).document(doc_id)

    async def _run(self, label: str, fn, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except SignalingError:
            raise
        except Exception as e:
            logger.error(f"[SIGNALING] {label} failed: {e}")
            raise SignalingError(f"{label} failed: {e}") from e

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        def _get():
            doc = self._doc(collection, doc_id).get()
            return doc.to_dict() if doc.exists else None

        return await self._run(f"get {collection}/{doc_id}", _get)

    async def set(self, collection: str, doc_id: str, data: Document) -> None:
        await self._run(f"set {collection}/{doc_id}", lambda: self._doc(collection, doc_id).set(data))

    async def update(self, collection: str, doc_id: str, data: Document) -> None:
        await self._run(f"update {collection}/{doc_id}", lambda: self._doc(collection, doc_id).update(data))

    async def delete(self, collection: str, doc_id: str) -> None:
        # Firestore treats deleting a missing document as success
        await self._run(f"delete {collection}/{doc_id}", lambda: self._doc(collection, doc_id).delete())

    async def transition(
        self,
        collection: str,
        doc_id: str,
        allowed_from: Iterable[str],
        fields: TransitionFields,
    ) -> Optional[Document]:
        allowed = set(allowed_from)

        def _transition():
            from firebase_admin import firestore as fb_firestore

            doc_ref = self._doc(collection, doc_id)

            @fb_firestore.transactional
            def _txn(transaction):
                snapshot = doc_ref.get(transaction=transaction)
                if not snapshot.exists:
                    return False
                data = snapshot.to_dict() or {}
                if data.get("status") not in allowed:
                    return True
                transaction.update(doc_ref, resolve_fields(fields, data))
                return True

            if not _txn(self.db.transaction()):
                return None
            # Re-read so server timestamps come back resolved
            doc = doc_ref.get()
            return doc.to_dict() if doc.exists else None

        return await self._run(f"transition {collection}/{doc_id}", _transition)

    def subscribe(self, collection: str, doc_id: str, on_change: ChangeCallback) -> Unsubscribe:
        loop = asyncio.get_running_loop()
        doc_ref = self._doc(collection, doc_id)

        def _on_snapshot(docs, changes, read_time):
            data = _snapshot_data(docs)
            if not loop.is_closed():
                loop.call_soon_threadsafe(on_change, data)

        watch = doc_ref.on_snapshot(_on_snapshot)
        logger.debug(f"[SIGNALING] Watching {collection}/{doc_id}")

        def unsubscribe():
            try:
                watch.unsubscribe()
            except Exception as e:
                logger.warning(f"[SIGNALING] Unsubscribe {collection}/{doc_id} failed: {e}")

        return unsubscribe
