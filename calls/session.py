"""
Session State Machine.

Owns one client's call lifecycle:

    Idle -> Calling -> Active -> Ended      (caller)
    Idle -> Receiving -> Active -> Ended    (receiver)

and any non-idle state may go straight to Ended. Local actions write to the
Signaling Channel; the other party's writes come back as Session Record
notifications and are handled as a pure function of the latest observed
record. The media engine is joined and left in step with the signaling
state.

Everything here runs on one asyncio loop. `_generation` changes whenever a
call is claimed or torn down; notifications, timers and in-flight
operations that captured an older generation are ignored.
"""
import asyncio
import logging
from typing import Callable, List, Optional

from .constants import (
    AGORA_APP_ID,
    RING_TIMEOUT_SECONDS,
    STATUS_ACTIVE,
    STATUS_ENDED,
    STATUS_MISSED,
    STATUS_REJECTED,
    STATUS_RINGING,
)
from .errors import CallError, CallResult, MediaEngineError, SignalingError
from .media import MediaEngine, MediaEventHandler
from .models import CallData, LocalSessionView, SessionRecord
from .permissions import PermissionGate
from .profiles import resolve_caller
from .signaling import SignalingChannel
from .store import Unsubscribe
from .utils import generate_channel_name

logger = logging.getLogger("calls")


class CallSession(MediaEventHandler):

    def __init__(
        self,
        signaling: SignalingChannel,
        media: MediaEngine,
        permissions: PermissionGate,
        app_id: str = AGORA_APP_ID,
        ring_timeout: float = RING_TIMEOUT_SECONDS,
    ):
        self.signaling = signaling
        self.media = media
        self.permissions = permissions
        self.app_id = app_id
        self.ring_timeout = ring_timeout

        self.user_id: Optional[str] = None
        self.display_name = ""
        self.view = LocalSessionView(is_media_available=media.available)

        self._generation = 0
        self._ending = False
        self._unsubscribe: Optional[Unsubscribe] = None
        self._ring_timer: Optional[asyncio.TimerHandle] = None
        self._tasks = set()
        self._idle_listeners: List[Callable[[], None]] = []

        media.register_event_handler(self)

    # =========================================================================
    # Identity
    # =========================================================================

    def sign_in(self, user_id: str, display_name: str = "") -> None:
        self.user_id = user_id
        self.display_name = display_name
        logger.info(f"[SESSION] Signed in as {user_id}")

    async def sign_out(self) -> None:
        await self.end_call()
        logger.info(f"[SESSION] Signed out {self.user_id}")
        self.user_id = None
        self.display_name = ""

    def add_idle_listener(self, listener: Callable[[], None]) -> None:
        """Called every time the view returns to Idle after a call."""
        self._idle_listeners.append(listener)

    def state(self) -> dict:
        return self.view.to_dict()

    # =========================================================================
    # Public operations
    # =========================================================================

    async def start_call(self, receiver_id: str, receiver_name: str, emergency_id: Optional[str] = None) -> CallResult:
        logger.info(f"[CALL/START] {self.user_id} -> {receiver_id} (emergency={emergency_id})")

        if not self.user_id:
            return CallResult.fail(CallError.NOT_AUTHENTICATED)
        if not self.view.is_idle:
            return CallResult.fail(CallError.CALL_IN_PROGRESS)
        failure = await self._check_media_and_permission("[CALL/START]")
        if failure:
            return failure

        try:
            caller_name, caller_type = await resolve_caller(self.signaling.store, self.user_id, self.display_name)
        except Exception as e:
            logger.error(f"[CALL/START] Profile lookup failed: {e}")
            return CallResult.fail(CallError.SIGNALING_WRITE_FAILED, str(e))

        # An incoming call may have arrived while we were waiting
        if not self.view.is_idle:
            return CallResult.fail(CallError.CALL_IN_PROGRESS)

        channel_id = generate_channel_name(self.user_id, receiver_id)
        record = SessionRecord(
            channel_id=channel_id,
            caller_id=self.user_id,
            receiver_id=receiver_id,
            caller_name=caller_name,
            receiver_name=receiver_name or "",
            caller_type=caller_type,
            emergency_id=emergency_id,
            status=STATUS_RINGING,
        )
        generation = self._claim(CallData(record=record, is_outgoing=True))
        self.view.is_calling = True

        try:
            await self.signaling.create_session(record)
            await self.signaling.write_inbox(receiver_id, record)
        except SignalingError as e:
            logger.error(f"[CALL/START] Signaling write failed for {channel_id}: {e}")
            if generation == self._generation:
                await self._teardown("start failed", discard=True)
            else:
                await self._abandon(record)
            return CallResult.fail(CallError.SIGNALING_WRITE_FAILED, str(e))

        if generation != self._generation:
            logger.info(f"[CALL/START] {channel_id} ended before it was placed")
            await self._abandon(record)
            return CallResult.fail(CallError.CALL_NOT_RINGING, "Call ended before it connected")

        try:
            self._watch(channel_id, generation)
        except SignalingError as e:
            logger.error(f"[CALL/START] Cannot watch {channel_id}: {e}")
            await self._teardown("watch failed", discard=True)
            return CallResult.fail(CallError.SIGNALING_WRITE_FAILED, str(e))
        self._arm_ring_timer(generation)

        try:
            current = await self._join(channel_id, generation)
        except MediaEngineError as e:
            logger.error(f"[CALL/START] Media join failed for {channel_id}: {e}")
            if generation == self._generation:
                await self._teardown("media join failed", discard=True)
            return CallResult.fail(CallError.ENGINE_JOIN_FAILED, str(e))

        if not current:
            return CallResult.fail(CallError.CALL_NOT_RINGING, "Call ended before it connected")

        logger.info(f"[CALL/START] Ringing {receiver_id} on {channel_id}")
        return CallResult.ok(channel_id)

    async def answer_call(self) -> CallResult:
        call = self.view.call_data
        if call is None or not self.view.is_receiving_call:
            return CallResult.fail(CallError.NO_INCOMING_CALL)
        if not self.user_id:
            return CallResult.fail(CallError.NOT_AUTHENTICATED)

        logger.info(f"[CALL/ANSWER] {self.user_id} answering {call.channel_id}")
        failure = await self._check_media_and_permission("[CALL/ANSWER]")
        if failure:
            return failure

        generation = self._generation
        try:
            record = await self.signaling.mark_active(call.channel_id)
        except SignalingError as e:
            logger.error(f"[CALL/ANSWER] Failed to mark {call.channel_id} active: {e}")
            return CallResult.fail(CallError.SIGNALING_WRITE_FAILED, str(e))

        if generation != self._generation:
            return CallResult.fail(CallError.CALL_NOT_RINGING)
        if record is None or record.status != STATUS_ACTIVE:
            logger.info(f"[CALL/ANSWER] {call.channel_id} is no longer ringing ({record.status if record else 'deleted'})")
            await self._teardown("answer lost")
            return CallResult.fail(CallError.CALL_NOT_RINGING)

        self.view.is_receiving_call = False
        self.view.is_in_call = True
        self.view.call_data = call.observed(record)

        try:
            await self.signaling.delete_inbox(self.user_id)
        except SignalingError as e:
            logger.warning(f"[CALL/ANSWER] Could not clear inbox for {self.user_id}: {e}")

        try:
            current = await self._join(call.channel_id, generation)
        except MediaEngineError as e:
            logger.error(f"[CALL/ANSWER] Media join failed for {call.channel_id}: {e}")
            await self.end_call()
            return CallResult.fail(CallError.ENGINE_JOIN_FAILED, str(e))

        if not current:
            return CallResult.fail(CallError.CALL_NOT_RINGING, "Call ended while connecting")
        return CallResult.ok(call.channel_id)

    async def end_call(self) -> CallResult:
        channel_id = self.view.call_data.channel_id if self.view.call_data else None
        logger.info(f"[CALL/END] {self.user_id} hanging up {channel_id}")
        await self._teardown("local hang-up")
        return CallResult.ok(channel_id)

    async def reject_call(self) -> CallResult:
        call = self.view.call_data
        if call is None or not self.view.is_receiving_call:
            return CallResult.fail(CallError.NO_INCOMING_CALL)

        logger.info(f"[CALL/REJECT] {self.user_id} rejecting {call.channel_id}")
        await self._teardown("rejected", status=STATUS_REJECTED, inbox_user=self.user_id)
        return CallResult.ok(call.channel_id)

    def toggle_mute(self) -> bool:
        if self.media.initialized:
            muted = not self.view.is_muted
            self.media.mute_local(muted)
            self.view.is_muted = muted
        return self.view.is_muted

    def toggle_speaker(self) -> bool:
        if self.media.initialized:
            speaker_on = not self.view.is_speaker_on
            self.media.set_speakerphone(speaker_on)
            self.view.is_speaker_on = speaker_on
        return self.view.is_speaker_on

    def receive(self, record: SessionRecord) -> bool:
        """
        Enter Receiving for an incoming call found by the detector.

        Returns False when the view is busy.
        """
        if not self.view.is_idle or self._ending:
            return False
        generation = self._claim(CallData(record=record, is_outgoing=False))
        self.view.is_receiving_call = True
        try:
            self._watch(record.channel_id, generation)
        except SignalingError as e:
            logger.error(f"[CALL/INCOMING] Cannot watch {record.channel_id}: {e}")
            self._generation += 1
            self.view.reset()
            return False
        logger.info(f"[CALL/INCOMING] {record.caller_name or record.caller_id} is calling on {record.channel_id}")
        return True

    def close(self) -> None:
        """Process teardown: drop subscriptions and timers, release the engine."""
        self._cancel_watch()
        self._cancel_ring_timer()
        for task in list(self._tasks):
            task.cancel()
        try:
            self.media.release()
        except Exception as e:
            logger.warning(f"[MEDIA] Release failed: {e}")

    # =========================================================================
    # Remote observation
    # =========================================================================

    def handle_session_change(self, record: Optional[SessionRecord]) -> None:
        """Apply the latest observed Session Record to the local view."""
        if self._ending or self.view.call_data is None:
            return

        if record is None or record.is_terminal:
            status = record.status if record else "deleted"
            logger.info(f"[CALL/REMOTE] {self.view.call_data.channel_id} is {status}")
            self._spawn(self._teardown(f"remote {status}"))
            return

        self.view.call_data = self.view.call_data.observed(record)
        if record.status == STATUS_ACTIVE:
            self.view.is_in_call = True
            self.view.is_calling = False
            self.view.is_receiving_call = False

    def _watch(self, channel_id: str, generation: int) -> None:
        self._cancel_watch()

        def on_change(record):
            if generation != self._generation:
                return
            self.handle_session_change(record)

        self._unsubscribe = self.signaling.watch_session(channel_id, on_change)

    def _cancel_watch(self) -> None:
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            unsubscribe()

    # =========================================================================
    # Media events (delivered on the loop)
    # =========================================================================

    def on_joined(self, channel: str, user_id: str) -> None:
        logger.info(f"[MEDIA] Joined {channel} as {user_id}")

    def on_remote_joined(self, user_id: str) -> None:
        logger.info(f"[MEDIA] Remote user joined: {user_id}")
        if self.view.call_data is not None:
            self.view.remote_user_joined = True

    def on_remote_left(self, user_id: str, reason: int) -> None:
        logger.info(f"[MEDIA] Remote user left: {user_id} (reason={reason})")
        self.view.remote_user_joined = False
        if self.view.call_data is not None and not self._ending:
            self._spawn(self._teardown("remote left media"))

    def on_error(self, code: int, message: str) -> None:
        logger.error(f"[MEDIA] Engine error {code}: {message}")

    # =========================================================================
    # Internals
    # =========================================================================

    async def _check_media_and_permission(self, tag: str) -> Optional[CallResult]:
        if not self.media.available:
            return CallResult.fail(CallError.MEDIA_UNAVAILABLE)
        try:
            self.media.initialize(self.app_id)
        except Exception as e:
            logger.error(f"{tag} Media engine failed to initialize: {e}")
            return CallResult.fail(CallError.MEDIA_UNAVAILABLE, str(e))
        if not await self.permissions.request_microphone_permission():
            return CallResult.fail(CallError.PERMISSION_DENIED)
        return None

    def _claim(self, call: CallData) -> int:
        self._generation += 1
        self.view.call_data = call
        return self._generation

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _join(self, channel_id: str, generation: int) -> bool:
        """
        Join the media channel for the call of `generation`.

        Returns False when the call was torn down while joining. Any engine
        failure surfaces as MediaEngineError.
        """
        try:
            joined = await self.media.join(channel_id, self.user_id)
        except MediaEngineError:
            raise
        except Exception as e:
            raise MediaEngineError(f"Engine failed to join {channel_id}: {e}") from e
        if not joined:
            raise MediaEngineError(f"Engine refused to join {channel_id}")
        if generation != self._generation:
            await self._leave_media()
            return False
        return True

    async def _leave_media(self) -> None:
        if not self.media.initialized:
            return
        try:
            await self.media.leave()
        except Exception as e:
            logger.warning(f"[MEDIA] Leave failed (ignored): {e}")

    async def _teardown(
        self,
        reason: str,
        status: str = STATUS_ENDED,
        inbox_user: Optional[str] = None,
        discard: bool = False,
    ) -> None:
        """
        Shared teardown for hang-up, reject, remote termination and failed
        starts. Every step is attempted; the view always ends Idle.

        The view stays non-idle until the store cleanup finishes so a new
        call on the same channel id cannot start underneath it.
        """
        if self._ending or self.view.is_idle:
            return
        self._ending = True
        self._generation += 1
        call = self.view.call_data
        self._cancel_watch()
        self._cancel_ring_timer()
        logger.info(f"[CALL/TEARDOWN] {call.channel_id if call else '-'}: {reason}")

        try:
            await self._leave_media()
            if call is not None:
                if discard:
                    await self._best_effort("delete inbox", self.signaling.delete_inbox(call.record.receiver_id))
                    await self._best_effort("delete session", self.signaling.delete_session(call.channel_id))
                else:
                    await self._best_effort(
                        f"mark {status}", self.signaling.mark_terminal(call.channel_id, status)
                    )
                    await self._best_effort(
                        "delete inbox", self.signaling.delete_inbox(inbox_user or call.record.receiver_id)
                    )
        finally:
            self.view.reset()
            self._ending = False
            for listener in list(self._idle_listeners):
                try:
                    listener()
                except Exception as e:
                    logger.error(f"[SESSION] Idle listener failed: {e}")

    async def _abandon(self, record: SessionRecord) -> None:
        """Remove what a start that lost its call managed to write."""
        await self._best_effort(
            "end abandoned session", self.signaling.mark_terminal(record.channel_id, STATUS_ENDED)
        )
        await self._best_effort("delete abandoned inbox", self.signaling.delete_inbox(record.receiver_id))

    async def _best_effort(self, label: str, coro) -> None:
        try:
            await coro
        except Exception as e:
            logger.error(f"[CALL/TEARDOWN] {label} failed: {e}")

    # =========================================================================
    # Ring deadline
    # =========================================================================

    def _arm_ring_timer(self, generation: int) -> None:
        self._cancel_ring_timer()
        if self.ring_timeout <= 0:
            return
        loop = asyncio.get_running_loop()
        self._ring_timer = loop.call_later(self.ring_timeout, self._on_ring_timeout, generation)

    def _cancel_ring_timer(self) -> None:
        timer, self._ring_timer = self._ring_timer, None
        if timer is not None:
            timer.cancel()

    def _on_ring_timeout(self, generation: int) -> None:
        self._ring_timer = None
        if generation != self._generation or self._ending or not self.view.is_calling:
            return
        self._spawn(self._expire_ringing(generation))

    async def _expire_ringing(self, generation: int) -> None:
        call = self.view.call_data
        if call is None:
            return
        try:
            record = await self.signaling.mark_terminal(call.channel_id, STATUS_MISSED, allowed_from=(STATUS_RINGING,))
        except SignalingError as e:
            logger.error(f"[CALL/MISSED] Could not mark {call.channel_id} missed: {e}")
            record = None
        if generation != self._generation:
            return
        if record is not None and record.status == STATUS_ACTIVE:
            # Answered just before the deadline
            return
        logger.info(f"[CALL/MISSED] No answer on {call.channel_id} after {self.ring_timeout}s")
        await self._teardown("no answer", status=STATUS_MISSED)
