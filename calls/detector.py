"""
Incoming Call Detector.

Watches incomingCalls/{uid} for the signed-in user. The Inbox Record only
announces a call: before ringing locally the detector re-reads the Session
Record, since the two documents have no ordering guarantee between them.
When the announcement is seen first, the detector watches the Session Record
until the caller's write shows up.
"""
import asyncio
import logging
from typing import Optional

from .constants import STATUS_RINGING
from .errors import SignalingError
from .models import InboxRecord
from .session import CallSession
from .signaling import SignalingChannel
from .store import Unsubscribe
from .utils import normalize_datetime

logger = logging.getLogger("calls")


def announced_before_end(inbox: InboxRecord, record) -> bool:
    created = normalize_datetime(inbox.created_at)
    ended = normalize_datetime(record.ended_at)
    return created is not None and ended is not None and created <= ended


class IncomingCallDetector:

    def __init__(self, signaling: SignalingChannel, session: CallSession):
        self.signaling = signaling
        self.session = session
        self.user_id: Optional[str] = None
        self._unsubscribe: Optional[Unsubscribe] = None
        # Session Record watch for an announcement that arrived early
        self._pending_channel: Optional[str] = None
        self._pending_unsubscribe: Optional[Unsubscribe] = None
        self._tasks = set()
        session.add_idle_listener(self.recheck)

    @property
    def running(self) -> bool:
        return self._unsubscribe is not None

    def start(self, user_id: str) -> None:
        """Subscribe for the lifetime of the signed-in session."""
        self.stop()
        self.user_id = user_id
        try:
            self._unsubscribe = self.signaling.watch_inbox(user_id, self._on_inbox_change)
        except SignalingError as e:
            logger.error(f"[DETECTOR] Cannot watch incoming calls for {user_id}: {e}")
            return
        logger.info(f"[DETECTOR] Watching incoming calls for {user_id}")

    def stop(self) -> None:
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            unsubscribe()
            logger.info(f"[DETECTOR] Stopped watching {self.user_id}")
        self._cancel_pending()
        for task in list(self._tasks):
            task.cancel()
        self.user_id = None

    def recheck(self) -> None:
        """Look at the inbox again once the session is idle."""
        if self.running:
            self._spawn(self._recheck())

    async def _recheck(self):
        user_id = self.user_id
        try:
            inbox = await self.signaling.read_inbox(user_id)
        except SignalingError as e:
            logger.warning(f"[DETECTOR] Inbox re-read failed: {e}")
            return
        if user_id == self.user_id and inbox is not None:
            await self.process(inbox)

    def _on_inbox_change(self, inbox: Optional[InboxRecord]) -> None:
        if inbox is None:
            # Clearing the receiving state is the session's job
            self._cancel_pending()
            return
        self._spawn(self.process(inbox))

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def process(self, inbox: InboxRecord) -> bool:
        """
        Hydrate and ring for one observed Inbox Record.

        Returns True when the session entered Receiving.
        """
        if inbox.status != STATUS_RINGING or not self.session.view.is_idle:
            return False

        user_id = self.user_id
        try:
            record = await self.signaling.read_session(inbox.channel_id)
        except SignalingError as e:
            logger.error(f"[DETECTOR] Could not read {inbox.channel_id}: {e}")
            return False

        if user_id != self.user_id:
            return False
        if record is None:
            logger.info(f"[DETECTOR] Session {inbox.channel_id} not visible yet; waiting for it")
            self._wait_for_session(inbox.channel_id)
            return False
        if record.is_terminal:
            if not announced_before_end(inbox, record):
                logger.info(f"[DETECTOR] {inbox.channel_id} still shows the previous call; waiting for it")
                self._wait_for_session(inbox.channel_id)
                return False
            logger.info(f"[DETECTOR] Stale announcement for {inbox.channel_id} ({record.status}); clearing")
            self._cancel_pending()
            try:
                await self.signaling.delete_inbox(user_id)
            except SignalingError as e:
                logger.warning(f"[DETECTOR] Could not clear stale inbox: {e}")
            return False

        self._cancel_pending()
        if record.status != STATUS_RINGING or record.receiver_id != user_id:
            return False

        # Re-check after the read: another notification may have won
        return self.session.receive(record)

    # =========================================================================
    # Announcement ahead of the Session Record
    # =========================================================================

    def _wait_for_session(self, channel_id: str) -> None:
        if self._pending_channel == channel_id:
            return
        self._cancel_pending()
        user_id = self.user_id

        def on_change(record):
            if record is None or record.status != STATUS_RINGING or record.receiver_id != user_id:
                return
            if user_id == self.user_id and self._pending_channel == channel_id:
                self._spawn(self._ring_pending(channel_id))

        try:
            self._pending_unsubscribe = self.signaling.watch_session(channel_id, on_change)
        except SignalingError as e:
            logger.error(f"[DETECTOR] Cannot watch {channel_id}: {e}")
            return
        self._pending_channel = channel_id

    async def _ring_pending(self, channel_id: str) -> None:
        """The Session Record turned ringing; ring if the inbox still announces it."""
        user_id = self.user_id
        try:
            inbox = await self.signaling.read_inbox(user_id)
        except SignalingError as e:
            logger.warning(f"[DETECTOR] Inbox re-read failed: {e}")
            return
        if user_id != self.user_id or inbox is None or inbox.channel_id != channel_id:
            return
        await self.process(inbox)

    def _cancel_pending(self) -> None:
        unsubscribe, self._pending_unsubscribe = self._pending_unsubscribe, None
        self._pending_channel = None
        if unsubscribe is not None:
            unsubscribe()
