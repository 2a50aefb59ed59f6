"""Microphone permission gate."""
import pytest

from calls.permissions import PermissionGate


class TestPermissionGate:

    @pytest.mark.asyncio
    async def test_default(self):
        assert await PermissionGate(default=True).request_microphone_permission()
        assert not await PermissionGate(default=False).request_microphone_permission()

    @pytest.mark.asyncio
    async def test_reported_answer_wins(self):
        gate = PermissionGate(default=True)
        gate.report(False)
        assert not await gate.request_microphone_permission()

        gate.report(True)
        assert await gate.request_microphone_permission()

    @pytest.mark.asyncio
    async def test_async_requester(self):
        async def ask():
            return True

        assert await PermissionGate(requester=ask, default=False).request_microphone_permission()

    @pytest.mark.asyncio
    async def test_failing_requester_is_denial(self):
        def ask():
            raise RuntimeError("dialog dismissed")

        assert not await PermissionGate(requester=ask, default=True).request_microphone_permission()
