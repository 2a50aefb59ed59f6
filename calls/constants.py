import os

# Firestore collections
CALLS_COLLECTION = "calls"
INCOMING_CALLS_COLLECTION = "incomingCalls"
RESPONDERS_COLLECTION = "responders"
USERS_COLLECTION = "users"

# Session Record status values
STATUS_RINGING = "ringing"
STATUS_ACTIVE = "active"
STATUS_ENDED = "ended"
STATUS_REJECTED = "rejected"
STATUS_MISSED = "missed"

TERMINAL_STATUSES = frozenset({STATUS_ENDED, STATUS_REJECTED, STATUS_MISSED})
LIVE_STATUSES = frozenset({STATUS_RINGING, STATUS_ACTIVE})

CALLER_TYPE_USER = "user"
CALLER_TYPE_RESPONDER = "responder"

CHANNEL_PREFIX = "call_"

# Agora
AGORA_APP_ID = os.environ.get("AGORA_APP_ID", "")
AGORA_APP_CERT = os.environ.get("AGORA_APP_CERT", "")
DEFAULT_TOKEN_EXPIRE_SECONDS = 86400
MAX_TOKEN_EXPIRE_SECONDS = 86400
ROLE_PUBLISHER = 1

# Runtime
SIGNALING_BACKEND = os.environ.get("CALLS_SIGNALING_BACKEND", "firestore").lower()
MEDIA_ENGINE = os.environ.get("CALLS_MEDIA_ENGINE", "agora").lower()
RING_TIMEOUT_SECONDS = float(os.environ.get("CALLS_RING_TIMEOUT_SECONDS", "0"))
OPERATION_TIMEOUT_SECONDS = float(os.environ.get("CALLS_OPERATION_TIMEOUT_SECONDS", "15"))
MICROPHONE_DEFAULT = os.environ.get("CALLS_MICROPHONE_DEFAULT", "granted").lower() != "denied"
TOKEN_EXPIRE_SECONDS = os.environ.get("CALLS_TOKEN_EXPIRE_SECONDS", DEFAULT_TOKEN_EXPIRE_SECONDS)
