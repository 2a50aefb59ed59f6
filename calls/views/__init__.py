from .health import health
from .session import session_sign_in, session_sign_out
from .device import device_microphone
from .calls import (
    call_start,
    call_answer,
    call_end,
    call_reject,
    call_mute,
    call_speaker,
    call_state,
)

__all__ = [
    "health",
    "session_sign_in",
    "session_sign_out",
    "device_microphone",
    "call_start",
    "call_answer",
    "call_end",
    "call_reject",
    "call_mute",
    "call_speaker",
    "call_state",
]
