import logging
from typing import Tuple

from .constants import (
    CALLER_TYPE_RESPONDER,
    CALLER_TYPE_USER,
    RESPONDERS_COLLECTION,
    USERS_COLLECTION,
)
from .store import DocumentStore

logger = logging.getLogger("calls")


def _full_name(data) -> str:
    return f"{data.get('firstName') or ''} {data.get('lastName') or ''}".strip()


async def resolve_caller(store: DocumentStore, user_id: str, display_name: str = "") -> Tuple[str, str]:
    """
    Resolve (callerName, callerType) from the caller's own profile.

    A responders/{uid} document wins over users/{uid}.
    """
    responder = await store.get(RESPONDERS_COLLECTION, user_id)
    if responder is not None:
        return _full_name(responder) or "Responder", CALLER_TYPE_RESPONDER

    user = await store.get(USERS_COLLECTION, user_id)
    if user is not None:
        return _full_name(user) or display_name or "User", CALLER_TYPE_USER

    logger.info(f"[PROFILE] No profile document for {user_id}")
    return "Unknown", CALLER_TYPE_USER
