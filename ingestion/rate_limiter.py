"""
Per-source request pacing.

Each source has a minimum spacing between outbound calls. Callers for the
same source are served in arrival order (asyncio.Lock is FIFO); different
sources never wait on each other.
"""

import asyncio
import time
from typing import Awaitable, Callable, Dict, Optional
import logging

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Grants turns no closer together than the configured spacing.

    The clock and sleep functions are injectable so tests can run without
    real delays.
    """

    def __init__(
        self,
        spacing_ms: Dict[str, int],
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._spacing = {source: ms / 1000.0 for source, ms in spacing_ms.items()}
        self._clock = clock
        self._sleep = sleep
        self._last_granted: Dict[str, float] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def spacing_for(self, source: str) -> float:
        return self._spacing.get(source, 0.0)

    def last_granted(self, source: str) -> Optional[float]:
        return self._last_granted.get(source)

    async def wait_turn(self, source: str) -> float:
        """Block until ``source`` may issue its next call; returns the granted time."""
        lock = self._locks.setdefault(source, asyncio.Lock())
        async with lock:
            spacing = self.spacing_for(source)
            last = self._last_granted.get(source)
            now = self._clock()

            if last is None:
                granted = now
            else:
                earliest = last + spacing
                wait = earliest - now
                if wait > 0:
                    await self._sleep(wait)
                    now = self._clock()
                granted = max(now, earliest)

            self._last_granted[source] = granted
            return granted
