"""Minimum spacing between outbound model requests."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class RateLimiter:
    """Enforces ``min_interval`` seconds between consecutive calls.

    One instance is shared by every request an extractor makes, including the
    concurrent single-email calls of a sub-batch. The lock serialises reads and
    writes of the last-call timestamp, so callers queue rather than race.

    Usage::

        limiter = RateLimiter(0.5)
        await limiter.wait_if_needed()
    """

    def __init__(
        self,
        min_interval: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.min_interval = max(min_interval, 0.0)
        self._clock = clock
        self._sleep = sleep
        self._last_call: float | None = None
        self._lock = asyncio.Lock()

    async def wait_if_needed(self) -> None:
        """Sleep until at least ``min_interval`` has passed since the last call."""
        async with self._lock:
            if self._last_call is not None:
                remaining = self.min_interval - (self._clock() - self._last_call)
                if remaining > 0:
                    logger.debug("Rate limiter sleeping %.2fs", remaining)
                    await self._sleep(remaining)
            self._last_call = self._clock()
