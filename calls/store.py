"""
Document store contract used as the signaling transport.

Implementations:
- FirestoreDocumentStore (firebase_service.py): Cloud Firestore via firebase-admin
- MemoryDocumentStore (memory_store.py): in-process, for development and tests

Every operation is a coroutine. Change notifications are delivered on the
event loop that opened the subscription, one call per observed value, with
None meaning the document does not exist.
"""
from typing import Any, Callable, Dict, Iterable, Optional, Union

Document = Dict[str, Any]
ChangeCallback = Callable[[Optional[Document]], None]
Unsubscribe = Callable[[], None]
# Fields for a conditional write, or a callable building them from the current document
TransitionFields = Union[Document, Callable[[Document], Document]]


class DocumentStore:
    """Abstract document store."""

    name = "abstract"

    def is_available(self) -> bool:
        return True

    def server_timestamp(self) -> Any:
        raise NotImplementedError

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        raise NotImplementedError

    async def set(self, collection: str, doc_id: str, data: Document) -> None:
        """Full overwrite."""
        raise NotImplementedError

    async def update(self, collection: str, doc_id: str, data: Document) -> None:
        """Partial merge into an existing document."""
        raise NotImplementedError

    async def delete(self, collection: str, doc_id: str) -> None:
        """Deleting a missing document is a successful no-op."""
        raise NotImplementedError

    async def transition(
        self,
        collection: str,
        doc_id: str,
        allowed_from: Iterable[str],
        fields: TransitionFields,
    ) -> Optional[Document]:
        """
        Compare-and-set on the document's "status".

        Applies `fields` only when the current status is in `allowed_from`.

        Returns:
            The document after the call (changed or not), or None if it does
            not exist.
        """
        raise NotImplementedError

    def subscribe(self, collection: str, doc_id: str, on_change: ChangeCallback) -> Unsubscribe:
        raise NotImplementedError


def resolve_fields(fields: TransitionFields, current: Document) -> Document:
    if callable(fields):
        return fields(dict(current))
    return dict(fields)
