import inspect
import logging
from typing import Awaitable, Callable, Optional, Union

from .constants import MICROPHONE_DEFAULT

logger = logging.getLogger("calls")

Requester = Callable[[], Union[bool, Awaitable[bool]]]


class PermissionGate:
    """
    Microphone permission check run before any session attempt.

    The platform answer is either produced by `requester` or reported by the
    UI layer through `report()`; otherwise the configured default applies.
    """

    def __init__(self, requester: Optional[Requester] = None, default: bool = MICROPHONE_DEFAULT):
        self._requester = requester
        self._reported: Optional[bool] = None
        self._default = default

    def report(self, granted: bool) -> None:
        self._reported = bool(granted)
        logger.info(f"[PERMISSION] Microphone {'granted' if granted else 'denied'} by platform")

    async def request_microphone_permission(self) -> bool:
        if self._requester is not None:
            try:
                result = self._requester()
                if inspect.isawaitable(result):
                    result = await result
                return bool(result)
            except Exception as e:
                logger.warning(f"[PERMISSION] Microphone request failed: {e}")
                return False
        if self._reported is not None:
            return self._reported
        return self._default
