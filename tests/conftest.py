import asyncio
import os

import django
import pytest

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")
os.environ.setdefault("CALLS_SIGNALING_BACKEND", "memory")
os.environ.setdefault("CALLS_MEDIA_ENGINE", "none")
django.setup()

from calls.detector import IncomingCallDetector  # noqa: E402
from calls.errors import MediaEngineError  # noqa: E402
from calls.media import MediaEngine  # noqa: E402
from calls.memory_store import MemoryDocumentStore  # noqa: E402
from calls.permissions import PermissionGate  # noqa: E402
from calls.session import CallSession  # noqa: E402
from calls.signaling import SignalingChannel  # noqa: E402


class FakeMediaEngine(MediaEngine):
    """Records what the session asks of the engine."""

    name = "fake"

    def __init__(self, available=True, join_result=True, join_error=None):
        super().__init__()
        self.available = available
        self.join_result = join_result
        self.join_error = join_error
        self.joined = []
        self.left = 0
        self.muted = False
        self.speakerphone = True
        self.released = False

    def initialize(self, app_id, profile="communication"):
        if not self.available:
            raise MediaEngineError("not available")
        self._capture_loop()
        self.initialized = True

    async def join(self, channel, local_user_id):
        if self.join_error is not None:
            raise self.join_error
        if self.join_result:
            self.joined.append((channel, local_user_id))
        return self.join_result

    async def leave(self):
        self.left += 1

    def mute_local(self, muted):
        self.muted = muted

    def set_speakerphone(self, enabled):
        self.speakerphone = enabled

    def release(self):
        self.released = True
        self.initialized = False

    def fire(self, event, *args):
        self._emit(event, *args)


class Party:
    """One client process: session, detector and engine for one user."""

    def __init__(self, store, user_id, name, media=None, permissions=None, ring_timeout=0):
        self.store = store
        self.user_id = user_id
        self.name = name
        self.media = media or FakeMediaEngine()
        self.signaling = SignalingChannel(store)
        self.session = CallSession(
            self.signaling,
            self.media,
            permissions or PermissionGate(default=True),
            app_id="test-app",
            ring_timeout=ring_timeout,
        )
        self.detector = IncomingCallDetector(self.signaling, self.session)

    @property
    def view(self):
        return self.session.view

    def sign_in(self):
        """Must run inside the event loop."""
        self.session.sign_in(self.user_id, self.name)
        self.detector.start(self.user_id)

    def close(self):
        self.detector.stop()
        self.session.close()


async def settle(rounds=100):
    """Let queued notifications and spawned tasks run to completion."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def active_flags(view):
    return sum([view.is_calling, view.is_in_call, view.is_receiving_call])


@pytest.fixture
def store():
    return MemoryDocumentStore()


@pytest.fixture
def alice(store):
    party = Party(store, "alice", "Alice")
    yield party
    party.close()


@pytest.fixture
def bob(store):
    party = Party(store, "bob", "Bob")
    yield party
    party.close()
