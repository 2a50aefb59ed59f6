"""
Signaling Channel: typed access to Session Records and Inbox Records.

The document store is the only channel between the two parties before media
is up, so every write here may race the other party's writes. Status
changes go through conditional transitions; deletes of missing documents
succeed.
"""
import logging
from typing import Callable, Optional

from .constants import (
    CALLS_COLLECTION,
    INCOMING_CALLS_COLLECTION,
    LIVE_STATUSES,
    STATUS_ACTIVE,
    STATUS_RINGING,
)
from .errors import SignalingError
from .models import InboxRecord, SessionRecord
from .store import DocumentStore, TransitionFields, Unsubscribe
from .utils import call_duration, utcnow

logger = logging.getLogger("calls")


class SignalingChannel:

    def __init__(self, store: DocumentStore):
        self.store = store

    async def _guard(self, label: str, coro):
        try:
            return await coro
        except SignalingError:
            raise
        except Exception as e:
            logger.error(f"[SIGNALING] {label} failed: {e}")
            raise SignalingError(f"{label} failed: {e}") from e

    def _subscribe(self, label: str, collection: str, doc_id: str, on_change) -> Unsubscribe:
        try:
            return self.store.subscribe(collection, doc_id, on_change)
        except SignalingError:
            raise
        except Exception as e:
            logger.error(f"[SIGNALING] {label} failed: {e}")
            raise SignalingError(f"{label} failed: {e}") from e

    # =========================================================================
    # Session Records
    # =========================================================================

    async def create_session(self, record: SessionRecord) -> None:
        data = record.to_dict()
        data["createdAt"] = self.store.server_timestamp()
        data["answeredAt"] = None
        data["endedAt"] = None
        await self._guard(
            f"create session {record.channel_id}",
            self.store.set(CALLS_COLLECTION, record.channel_id, data),
        )
        logger.info(f"[SIGNALING] Created session record: {record.channel_id}")

    async def read_session(self, channel_id: str) -> Optional[SessionRecord]:
        data = await self._guard(
            f"read session {channel_id}",
            self.store.get(CALLS_COLLECTION, channel_id),
        )
        return SessionRecord.from_dict(data) if data is not None else None

    async def delete_session(self, channel_id: str) -> None:
        await self._guard(
            f"delete session {channel_id}",
            self.store.delete(CALLS_COLLECTION, channel_id),
        )

    async def _transition(self, channel_id, allowed_from, fields: TransitionFields) -> Optional[SessionRecord]:
        data = await self._guard(
            f"transition session {channel_id}",
            self.store.transition(CALLS_COLLECTION, channel_id, allowed_from, fields),
        )
        return SessionRecord.from_dict(data) if data is not None else None

    async def mark_active(self, channel_id: str) -> Optional[SessionRecord]:
        """
        ringing -> active. Re-answering an active call keeps its answeredAt.

        Returns the record as it stands afterwards; callers check its status
        to learn whether the answer took effect.
        """
        answered_at = self.store.server_timestamp()

        def fields(current):
            if current.get("status") == STATUS_ACTIVE and current.get("answeredAt"):
                return {"status": STATUS_ACTIVE}
            return {"status": STATUS_ACTIVE, "answeredAt": answered_at}

        return await self._transition(channel_id, (STATUS_RINGING, STATUS_ACTIVE), fields)

    async def mark_terminal(self, channel_id: str, status: str, allowed_from=LIVE_STATUSES) -> Optional[SessionRecord]:
        """
        Write a terminal status unless one is already there.
        `allowed_from` narrows which live statuses may be replaced.

        Returns None when the record no longer exists.
        """
        ended_at = utcnow()

        def fields(current):
            update = {"status": status, "endedAt": self.store.server_timestamp()}
            duration = call_duration(current.get("answeredAt"), ended_at)
            if duration is not None:
                update["durationSec"] = duration
            return update

        return await self._transition(channel_id, allowed_from, fields)

    def watch_session(self, channel_id: str, on_change: Callable[[Optional[SessionRecord]], None]) -> Unsubscribe:
        def _on_change(data):
            on_change(SessionRecord.from_dict(data) if data is not None else None)

        return self._subscribe(f"watch session {channel_id}", CALLS_COLLECTION, channel_id, _on_change)

    # =========================================================================
    # Inbox Records
    # =========================================================================

    async def write_inbox(self, receiver_id: str, record: SessionRecord) -> None:
        inbox = InboxRecord.for_session(record, created_at=self.store.server_timestamp())
        await self._guard(
            f"write inbox {receiver_id}",
            self.store.set(INCOMING_CALLS_COLLECTION, receiver_id, inbox.to_dict()),
        )
        logger.info(f"[SIGNALING] Announced {record.channel_id} to {receiver_id}")

    async def read_inbox(self, user_id: str) -> Optional[InboxRecord]:
        data = await self._guard(
            f"read inbox {user_id}",
            self.store.get(INCOMING_CALLS_COLLECTION, user_id),
        )
        return InboxRecord.from_dict(data) if data is not None else None

    async def delete_inbox(self, user_id: str) -> None:
        await self._guard(
            f"delete inbox {user_id}",
            self.store.delete(INCOMING_CALLS_COLLECTION, user_id),
        )

    def watch_inbox(self, user_id: str, on_change: Callable[[Optional[InboxRecord]], None]) -> Unsubscribe:
        def _on_change(data):
            on_change(InboxRecord.from_dict(data) if data is not None else None)

        return self._subscribe(f"watch inbox {user_id}", INCOMING_CALLS_COLLECTION, user_id, _on_change)
