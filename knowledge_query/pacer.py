"""
Request Pacer - serializes outbound generation calls.

Upstream generation APIs enforce rate limits, so every generation call takes a
slot first. With the default single slot, calls run one at a time across the
whole process and successive call starts are at least `min_interval` seconds
apart, no matter how many queries are in flight.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

MAX_CONCURRENT_REQUESTS = 1
MIN_INTERVAL = 3.0  # seconds


class RequestPacer:
    """
    Concurrency cap plus minimum spacing between call starts.

    Usage:
        async with pacer.slot():
            await generator.generate(prompt, params)
    """

    def __init__(
        self,
        min_interval: float = MIN_INTERVAL,
        max_concurrent: int = MAX_CONCURRENT_REQUESTS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.min_interval = min_interval
        self.max_concurrent = max_concurrent
        self._clock = clock
        self._sleep = sleep
        self._slots = asyncio.Semaphore(max_concurrent)
        self._spacing = asyncio.Lock()
        self._last_start: Optional[float] = None

    async def acquire(self) -> None:
        """Wait for a free slot and for the spacing window, then mark a call start."""
        await self._slots.acquire()
        try:
            async with self._spacing:
                if self._last_start is not None:
                    wait = self._last_start + self.min_interval - self._clock()
                    if wait > 0:
                        logger.debug(f"Pacing generation call for {wait:.2f}s")
                        await self._sleep(wait)
                self._last_start = self._clock()
        except BaseException:
            self._slots.release()
            raise

    def release(self) -> None:
        """Give the slot back."""
        self._slots.release()

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        await self.acquire()
        try:
            yield
        finally:
            self.release()

    @property
    def last_start(self) -> Optional[float]:
        """Clock reading of the most recent call start, if any."""
        return self._last_start
