"""
Status Refresh Rate Limiter
Enforces a minimum interval between connection status refreshes.

Calls inside the cooldown window are dropped, not queued.
"""

import asyncio
import logging
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class StatusRefreshGuard:
    """
    Last-call-timestamp guard for status refreshes.

    At most one refresh per cooldown window, and never two in flight at once.
    """

    def __init__(
        self,
        cooldown_seconds: float = 10.0,
        clock: Optional[Callable[[], float]] = None,
    ):
        """
        Initialize guard.

        Args:
            cooldown_seconds: Minimum seconds between refreshes (default: 10)
            clock: Monotonic time source (injectable for tests)
        """
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock or time.monotonic
        self._last_call: Optional[float] = None
        self._lock = asyncio.Lock()

    def try_acquire(self) -> bool:
        """
        Claim the next refresh slot.

        Returns:
            True if the caller may refresh now, False if the call must be dropped
        """
        if self._lock.locked():
            logger.info("Status refresh already in progress, skipping")
            return False

        now = self._clock()
        if self._last_call is not None and now - self._last_call < self.cooldown_seconds:
            logger.info(
                "Status refresh rate limited (%.1fs since last check), skipping",
                now - self._last_call,
            )
            return False

        self._last_call = now
        return True

    @property
    def lock(self) -> asyncio.Lock:
        """Lock held for the duration of a refresh."""
        return self._lock

    def reset(self) -> None:
        """Forget the last call (next refresh is allowed immediately)."""
        self._last_call = None
