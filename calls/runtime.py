"""
Process runtime for the call core.

One client process owns one CallSession. All of it (store notifications,
media callbacks, public operations) runs on a single asyncio loop living in
a daemon thread; Django request threads hand coroutines to that loop and
wait for the result. Resources are released at process exit, not per call.
"""
import asyncio
import atexit
import logging
import threading
from typing import Optional

from .constants import OPERATION_TIMEOUT_SECONDS, RING_TIMEOUT_SECONDS, SIGNALING_BACKEND
from .detector import IncomingCallDetector
from .firebase_service import FirestoreDocumentStore
from .media import MediaEngine, probe_media_engine
from .memory_store import MemoryDocumentStore
from .permissions import PermissionGate
from .session import CallSession
from .signaling import SignalingChannel
from .store import DocumentStore

logger = logging.getLogger("calls")


def build_store(backend: str = SIGNALING_BACKEND) -> DocumentStore:
    if backend == "memory":
        return MemoryDocumentStore()
    if backend == "firestore":
        return FirestoreDocumentStore()
    raise ValueError(f"Unknown signaling backend: {backend}")


class CallRuntime:

    def __init__(
        self,
        store: Optional[DocumentStore] = None,
        media: Optional[MediaEngine] = None,
        permissions: Optional[PermissionGate] = None,
        ring_timeout: float = RING_TIMEOUT_SECONDS,
        operation_timeout: float = OPERATION_TIMEOUT_SECONDS,
    ):
        self._store = store
        self._media = media
        self._permissions = permissions
        self.ring_timeout = ring_timeout
        self.operation_timeout = operation_timeout

        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self.session: Optional[CallSession] = None
        self.detector: Optional[IncomingCallDetector] = None
        self.store: Optional[DocumentStore] = None
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def started(self) -> bool:
        return self.loop is not None

    def start(self) -> "CallRuntime":
        with self._lock:
            if self.loop is not None:
                return self

            self.store = self._store or build_store()
            media = self._media or probe_media_engine()
            permissions = self._permissions or PermissionGate()
            signaling = SignalingChannel(self.store)
            self.session = CallSession(signaling, media, permissions, ring_timeout=self.ring_timeout)
            self.detector = IncomingCallDetector(signaling, self.session)

            loop = asyncio.new_event_loop()
            ready = threading.Event()

            def _run():
                asyncio.set_event_loop(loop)
                loop.call_soon(ready.set)
                loop.run_forever()

            self._thread = threading.Thread(target=_run, name="call-runtime", daemon=True)
            self._thread.start()
            ready.wait()
            self.loop = loop
            logger.info(
                f"[RUNTIME] Started (store={self.store.name}, media={media.name}, "
                f"available={media.available})"
            )
            return self

    def run(self, coro, timeout: Optional[float] = None):
        """Run a coroutine on the runtime loop and wait for its result."""
        if self.loop is None:
            coro.close()
            raise RuntimeError("Call runtime is not started")
        future = asyncio.run_coroutine_threadsafe(coro, self.loop)
        return future.result(timeout if timeout is not None else self.operation_timeout)

    def call(self, fn, *args, timeout: Optional[float] = None):
        """Run a plain function on the runtime loop."""
        async def _call():
            return fn(*args)

        return self.run(_call(), timeout=timeout)

    # =========================================================================
    # Signed-in user
    # =========================================================================

    def sign_in(self, user_id: str, display_name: str = "") -> dict:
        def _sign_in():
            self.session.sign_in(user_id, display_name)
            self.detector.start(user_id)
            return self.session.state()

        return self.call(_sign_in)

    def sign_out(self) -> dict:
        async def _sign_out():
            self.detector.stop()
            await self.session.sign_out()
            return self.session.state()

        return self.run(_sign_out())

    # =========================================================================
    # Process teardown
    # =========================================================================

    def shutdown(self) -> None:
        with self._lock:
            loop, self.loop = self.loop, None
            if loop is None:
                return

            def _close():
                self.detector.stop()
                self.session.close()

            try:
                asyncio.run_coroutine_threadsafe(self._as_coro(_close), loop).result(5)
            except Exception as e:
                logger.warning(f"[RUNTIME] Cleanup failed: {e}")
            loop.call_soon_threadsafe(loop.stop)
            if self._thread is not None:
                self._thread.join(5)
            loop.close()
            logger.info("[RUNTIME] Stopped")

    @staticmethod
    async def _as_coro(fn):
        return fn()


call_runtime = CallRuntime()


def get_runtime() -> CallRuntime:
    return call_runtime.start()


atexit.register(call_runtime.shutdown)
