"""
Outbound Rate Governor

Single gate in front of every upstream quote request. Callers queue on one
lock, so no two governed calls happen closer than ``min_interval`` apart no
matter how many coroutines ask for a slot at once.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class RateGovernor:
    def __init__(
        self,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if min_interval < 0:
            raise ValueError("min_interval must be >= 0")
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last_call: float | None = None

        self.total_slots = 0

    async def acquire_slot(self) -> float:
        """Wait until the next request may go out; returns the time waited."""
        async with self._lock:
            wait = 0.0
            if self._last_call is not None:
                wait = max(0.0, self.min_interval - (self._clock() - self._last_call))
            if wait > 0:
                logger.debug("Rate governor delaying outbound call by %.3fs", wait)
                await self._sleep(wait)
            self._last_call = self._clock()
            self.total_slots += 1
            return wait

