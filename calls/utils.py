from datetime import datetime, timezone
from typing import Optional

from .constants import CHANNEL_PREFIX, DEFAULT_TOKEN_EXPIRE_SECONDS, MAX_TOKEN_EXPIRE_SECONDS


def clamp_expire(expire):
    try:
        expire = int(expire)
    except (TypeError, ValueError):
        return DEFAULT_TOKEN_EXPIRE_SECONDS
    if expire <= 0:
        return DEFAULT_TOKEN_EXPIRE_SECONDS
    return min(expire, MAX_TOKEN_EXPIRE_SECONDS)


def generate_channel_name(user_a: str, user_b: str) -> str:
    """Both parties derive the same channel id from the unordered pair."""
    first, second = sorted([user_a, user_b])
    return f"{CHANNEL_PREFIX}{first}_{second}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_datetime(value) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if hasattr(value, "timestamp"):
        return datetime.fromtimestamp(value.timestamp(), tz=timezone.utc)
    return None


def call_duration(answered_at, ended_at) -> Optional[int]:
    """Whole seconds between answer and end, None if never answered."""
    start = normalize_datetime(answered_at)
    end = normalize_datetime(ended_at)
    if start is None or end is None:
        return None
    return max(0, int((end - start).total_seconds()))


def format_timestamp(ts):
    if ts is None:
        return None
    if hasattr(ts, "isoformat"):
        return ts.isoformat()
    if hasattr(ts, "timestamp"):
        return datetime.fromtimestamp(ts.timestamp(), tz=timezone.utc).isoformat()
    return str(ts)
