"""Minimum-interval gate for storage control-plane calls."""

import asyncio
import logging
import time
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class MinIntervalRateLimiter:
    """Serialize callers so consecutive calls are at least ``min_interval`` apart.

    One instance is shared by every upload in the process: backends throttle
    control-plane calls per account, not per upload.
    """

    def __init__(
        self,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.min_interval = max(0.0, min_interval)
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last_call: float | None = None
        self.calls = 0

    async def wait(self) -> None:
        """Block until the next control-plane call may go out."""
        async with self._lock:
            if self._last_call is not None and self.min_interval > 0:
                elapsed = self._clock() - self._last_call
                if elapsed < self.min_interval:
                    await self._sleep(self.min_interval - elapsed)
            self._last_call = self._clock()
            self.calls += 1

    async def __aenter__(self) -> "MinIntervalRateLimiter":
        await self.wait()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        return None
