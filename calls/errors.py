"""
Error taxonomy for the call core.

Adapters raise exceptions; the session state machine converts them to a
CallResult at its public boundary so callers never see a raise from
start/answer.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Dict, Any


class CallError(str, Enum):
    NOT_AUTHENTICATED = "not_authenticated"
    MEDIA_UNAVAILABLE = "media_unavailable"
    PERMISSION_DENIED = "permission_denied"
    SIGNALING_WRITE_FAILED = "signaling_write_failed"
    ENGINE_JOIN_FAILED = "engine_join_failed"
    CALL_IN_PROGRESS = "call_in_progress"
    NO_INCOMING_CALL = "no_incoming_call"
    CALL_NOT_RINGING = "call_not_ringing"


ERROR_MESSAGES = {
    CallError.NOT_AUTHENTICATED: "Not authenticated",
    CallError.MEDIA_UNAVAILABLE: "Voice calling is not available on this device",
    CallError.PERMISSION_DENIED: "Microphone access is required for voice calls",
    CallError.SIGNALING_WRITE_FAILED: "Could not reach the call service",
    CallError.ENGINE_JOIN_FAILED: "Could not connect the voice channel",
    CallError.CALL_IN_PROGRESS: "Another call is already in progress",
    CallError.NO_INCOMING_CALL: "There is no incoming call",
    CallError.CALL_NOT_RINGING: "The call is no longer ringing",
}


class SignalingError(Exception):
    """A document store operation was rejected or timed out."""


class MediaEngineError(Exception):
    """The media engine failed to initialize, join or leave."""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.code = code


@dataclass
class CallResult:
    """Outcome of a call operation"""
    success: bool
    error: Optional[CallError] = None
    message: Optional[str] = None
    channel_id: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, channel_id: Optional[str] = None, **extra) -> "CallResult":
        return cls(success=True, channel_id=channel_id, extra=extra)

    @classmethod
    def fail(cls, error: CallError, message: Optional[str] = None) -> "CallResult":
        return cls(success=False, error=error, message=message or ERROR_MESSAGES[error])

    def to_dict(self) -> Dict[str, Any]:
        data = {"success": self.success}
        if self.channel_id:
            data["channelId"] = self.channel_id
        if not self.success:
            data["error"] = self.error.value if self.error else None
            data["message"] = self.message
        data.update(self.extra)
        return data
