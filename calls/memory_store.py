"""In-process document store with asynchronous change notification."""
import asyncio
import copy
import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Tuple

from .store import ChangeCallback, Document, DocumentStore, TransitionFields, Unsubscribe, resolve_fields
from .utils import utcnow

logger = logging.getLogger("calls")

Key = Tuple[str, str]


class MemoryDocumentStore(DocumentStore):
    """
    Behaves like a last-write-wins document database shared by every client
    in the process. Each operation yields to the loop once, and listeners
    are notified with call_soon, so writes and notifications interleave the
    way they do against a remote store.
    """

    name = "memory"

    def __init__(self):
        self._docs: Dict[Key, Document] = {}
        self._listeners: Dict[Key, List[Tuple[asyncio.AbstractEventLoop, ChangeCallback]]] = defaultdict(list)

    def server_timestamp(self):
        return utcnow()

    def peek(self, collection: str, doc_id: str) -> Optional[Document]:
        """Synchronous read for inspection."""
        doc = self._docs.get((collection, doc_id))
        return copy.deepcopy(doc) if doc is not None else None

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        await asyncio.sleep(0)
        return self.peek(collection, doc_id)

    async def set(self, collection: str, doc_id: str, data: Document) -> None:
        await asyncio.sleep(0)
        self._docs[(collection, doc_id)] = copy.deepcopy(data)
        self._notify(collection, doc_id)

    async def update(self, collection: str, doc_id: str, data: Document) -> None:
        await asyncio.sleep(0)
        key = (collection, doc_id)
        if key not in self._docs:
            raise KeyError(f"No document to update: {collection}/{doc_id}")
        self._docs[key].update(copy.deepcopy(data))
        self._notify(collection, doc_id)

    async def delete(self, collection: str, doc_id: str) -> None:
        await asyncio.sleep(0)
        if self._docs.pop((collection, doc_id), None) is not None:
            self._notify(collection, doc_id)

    async def transition(
        self,
        collection: str,
        doc_id: str,
        allowed_from: Iterable[str],
        fields: TransitionFields,
    ) -> Optional[Document]:
        await asyncio.sleep(0)
        key = (collection, doc_id)
        current = self._docs.get(key)
        if current is None:
            return None
        if current.get("status") in set(allowed_from):
            current.update(copy.deepcopy(resolve_fields(fields, current)))
            self._notify(collection, doc_id)
        return copy.deepcopy(current)

    def subscribe(self, collection: str, doc_id: str, on_change: ChangeCallback) -> Unsubscribe:
        loop = asyncio.get_running_loop()
        key = (collection, doc_id)
        entry = (loop, on_change)
        self._listeners[key].append(entry)
        # Like Firestore, the current value is delivered first
        loop.call_soon(on_change, self.peek(collection, doc_id))

        def unsubscribe():
            listeners = self._listeners.get(key)
            if listeners and entry in listeners:
                listeners.remove(entry)
                if not listeners:
                    del self._listeners[key]

        return unsubscribe

    def _notify(self, collection: str, doc_id: str) -> None:
        for loop, callback in list(self._listeners.get((collection, doc_id), ())):
            loop.call_soon_threadsafe(callback, self.peek(collection, doc_id))
