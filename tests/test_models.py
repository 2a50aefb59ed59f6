"""Document shapes and the local view."""
from datetime import datetime, timezone

from calls.constants import STATUS_ENDED, STATUS_MISSED, STATUS_REJECTED, STATUS_RINGING
from calls.errors import CallError, CallResult
from calls.models import CallData, InboxRecord, LocalSessionView, SessionRecord


def record(**fields):
    data = dict(channel_id="call_alice_bob", caller_id="alice", receiver_id="bob")
    data.update(fields)
    return SessionRecord(**data)


class TestSessionRecord:

    def test_terminal_statuses(self):
        assert not record().is_terminal
        for status in (STATUS_ENDED, STATUS_REJECTED, STATUS_MISSED):
            assert record(status=status).is_terminal

    def test_from_document(self):
        parsed = SessionRecord.from_dict({
            "channelId": "call_alice_bob",
            "callerId": "alice",
            "receiverId": "bob",
            "callerName": None,
            "status": "active",
            "durationSec": 12,
        })
        assert parsed.caller_name == ""
        assert parsed.caller_type == "user"
        assert parsed.status == "active"
        assert parsed.duration_sec == 12

    def test_inbox_for_session(self):
        inbox = InboxRecord.for_session(record(caller_name="Alice", emergency_id="em-9"), created_at="ts")
        assert inbox.to_dict() == {
            "channelId": "call_alice_bob",
            "callerId": "alice",
            "callerName": "Alice",
            "callerType": "user",
            "emergencyId": "em-9",
            "status": STATUS_RINGING,
            "createdAt": "ts",
        }


class TestLocalSessionView:

    def test_idle_by_default(self):
        view = LocalSessionView()
        assert view.is_idle
        assert view.is_speaker_on

    def test_reset_keeps_speaker_preference(self):
        view = LocalSessionView(is_in_call=True, is_muted=True, is_speaker_on=False)
        view.call_data = CallData(record=record(), is_outgoing=True)

        view.reset()

        assert view.is_idle
        assert not view.is_muted
        assert not view.is_speaker_on

    def test_to_dict_formats_timestamps(self):
        created = datetime(2024, 5, 1, 8, 30, tzinfo=timezone.utc)
        view = LocalSessionView(is_calling=True, is_media_available=True)
        view.call_data = CallData(record=record(created_at=created), is_outgoing=True)

        data = view.to_dict()

        assert data["isCalling"]
        assert data["isMediaAvailable"]
        assert data["callData"]["createdAt"] == "2024-05-01T08:30:00+00:00"
        assert data["callData"]["isOutgoing"]


class TestCallResult:

    def test_failure_message_defaults(self):
        result = CallResult.fail(CallError.PERMISSION_DENIED)
        assert result.to_dict() == {
            "success": False,
            "error": "permission_denied",
            "message": "Microphone access is required for voice calls",
        }

    def test_success(self):
        assert CallResult.ok("call_alice_bob").to_dict() == {"success": True, "channelId": "call_alice_bob"}
