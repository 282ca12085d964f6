"""Minimum spacing between outbound source requests.

Runs for different searches execute concurrently but share one listing
source.  A single :class:`FetchThrottle` is handed to that source so
consecutive requests, whichever run issues them, are at least
``min_interval_s`` apart.

Typical usage::

    throttle = FetchThrottle(settings.fetch_delay_s)
    source = RightmoveSource(http, throttle=throttle)
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

__all__ = ["FetchThrottle"]

logger = logging.getLogger(__name__)


class FetchThrottle:
    """Serialise request starts with a minimum gap between them.

    Args:
        min_interval_s: Seconds that must elapse between two request starts.
            ``0`` disables the throttle.
        clock: Monotonic clock, injectable for tests.
        sleep: Coroutine used to wait, injectable for tests.

    Raises:
        ValueError: If ``min_interval_s`` is negative.
    """

    def __init__(
        self,
        min_interval_s: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if min_interval_s < 0:
            raise ValueError(f"min_interval_s must be ≥ 0, got {min_interval_s!r}.")
        self._min_interval_s = min_interval_s
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last_start: float | None = None

    @property
    def min_interval_s(self) -> float:
        return self._min_interval_s

    async def wait(self) -> None:
        """Block until the next request may start, then claim the slot."""
        async with self._lock:
            if self._last_start is not None and self._min_interval_s > 0:
                remaining = self._min_interval_s - (self._clock() - self._last_start)
                if remaining > 0:
                    logger.debug("Throttling source request for %.2f s", remaining)
                    await self._sleep(remaining)
            self._last_start = self._clock()
