# Models are stored in Firebase Firestore, not Django DB.
#
# Firestore Collections:
# - calls/{channelId}: Session Records with status, participants, timestamps
# - incomingCalls/{receiverId}: Inbox Record announcing a ringing call
# - responders/{uid}, users/{uid}: profiles used to resolve the caller name
#
# The dataclasses below are the typed shapes of those documents plus the
# in-memory Local Session View owned by one client process.
from dataclasses import dataclass, replace
from typing import Optional, Dict, Any

from .constants import CALLER_TYPE_USER, STATUS_RINGING, TERMINAL_STATUSES
from .utils import format_timestamp


@dataclass
class SessionRecord:
    """calls/{channelId}"""
    channel_id: str
    caller_id: str
    receiver_id: str
    caller_name: str = ""
    receiver_name: str = ""
    caller_type: str = CALLER_TYPE_USER
    emergency_id: Optional[str] = None
    status: str = STATUS_RINGING
    created_at: Any = None
    answered_at: Any = None
    ended_at: Any = None
    duration_sec: Optional[int] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionRecord":
        return cls(
            channel_id=data.get("channelId", ""),
            caller_id=data.get("callerId", ""),
            receiver_id=data.get("receiverId", ""),
            caller_name=data.get("callerName") or "",
            receiver_name=data.get("receiverName") or "",
            caller_type=data.get("callerType") or CALLER_TYPE_USER,
            emergency_id=data.get("emergencyId"),
            status=data.get("status", STATUS_RINGING),
            created_at=data.get("createdAt"),
            answered_at=data.get("answeredAt"),
            ended_at=data.get("endedAt"),
            duration_sec=data.get("durationSec"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "channelId": self.channel_id,
            "callerId": self.caller_id,
            "callerName": self.caller_name,
            "callerType": self.caller_type,
            "receiverId": self.receiver_id,
            "receiverName": self.receiver_name,
            "emergencyId": self.emergency_id,
            "status": self.status,
            "createdAt": self.created_at,
            "answeredAt": self.answered_at,
            "endedAt": self.ended_at,
        }


@dataclass
class InboxRecord:
    """incomingCalls/{receiverId} - existence means someone is calling."""
    channel_id: str
    caller_id: str
    caller_name: str = ""
    caller_type: str = CALLER_TYPE_USER
    emergency_id: Optional[str] = None
    status: str = STATUS_RINGING
    created_at: Any = None

    @classmethod
    def for_session(cls, record: SessionRecord, created_at: Any = None) -> "InboxRecord":
        return cls(
            channel_id=record.channel_id,
            caller_id=record.caller_id,
            caller_name=record.caller_name,
            caller_type=record.caller_type,
            emergency_id=record.emergency_id,
            status=STATUS_RINGING,
            created_at=created_at,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InboxRecord":
        return cls(
            channel_id=data.get("channelId", ""),
            caller_id=data.get("callerId", ""),
            caller_name=data.get("callerName") or "",
            caller_type=data.get("callerType") or CALLER_TYPE_USER,
            emergency_id=data.get("emergencyId"),
            status=data.get("status", STATUS_RINGING),
            created_at=data.get("createdAt"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "channelId": self.channel_id,
            "callerId": self.caller_id,
            "callerName": self.caller_name,
            "callerType": self.caller_type,
            "emergencyId": self.emergency_id,
            "status": self.status,
            "createdAt": self.created_at,
        }


@dataclass
class CallData:
    """Session Record as seen by one party, plus its local role."""
    record: SessionRecord
    is_outgoing: bool

    @property
    def channel_id(self) -> str:
        return self.record.channel_id

    def observed(self, record: SessionRecord) -> "CallData":
        return replace(self, record=record)

    def to_dict(self) -> Dict[str, Any]:
        data = self.record.to_dict()
        for key in ("createdAt", "answeredAt", "endedAt"):
            data[key] = format_timestamp(data[key])
        data["durationSec"] = self.record.duration_sec
        data["isOutgoing"] = self.is_outgoing
        return data


@dataclass
class LocalSessionView:
    is_calling: bool = False
    is_in_call: bool = False
    is_receiving_call: bool = False
    call_data: Optional[CallData] = None
    remote_user_joined: bool = False
    is_muted: bool = False
    is_speaker_on: bool = True
    is_media_available: bool = False

    @property
    def is_idle(self) -> bool:
        return self.call_data is None and not (
            self.is_calling or self.is_in_call or self.is_receiving_call
        )

    def reset(self) -> None:
        """Back to Idle. Speaker routing is a device preference and survives."""
        self.is_calling = False
        self.is_in_call = False
        self.is_receiving_call = False
        self.call_data = None
        self.remote_user_joined = False
        self.is_muted = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isCalling": self.is_calling,
            "isInCall": self.is_in_call,
            "isReceivingCall": self.is_receiving_call,
            "callData": self.call_data.to_dict() if self.call_data else None,
            "remoteUserJoined": self.remote_user_joined,
            "isMuted": self.is_muted,
            "isSpeakerOn": self.is_speaker_on,
            "isMediaAvailable": self.is_media_available,
        }


__all__ = [
    "SessionRecord",
    "InboxRecord",
    "CallData",
    "LocalSessionView",
]
