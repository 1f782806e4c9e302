"""
Token bucket rate limiter shared by all callers of one provider adapter
"""

import asyncio
import time
from typing import Awaitable, Callable

import structlog

from marketpulse.core.exceptions import RateLimitedError

logger = structlog.get_logger(__name__)


class TokenBucket:
    """
    Async token bucket.

    Callers reserve a token synchronously when they call ``acquire`` and then
    sleep until their reservation matures, so waiters are served strictly in
    call order. A caller whose reservation would mature later than
    ``max_wait`` seconds is rejected with ``RateLimitedError`` instead of
    queueing.
    """

    def __init__(
        self,
        name: str,
        rate_per_minute: float,
        burst: int = 1,
        max_wait: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if rate_per_minute <= 0:
            raise ValueError("rate_per_minute must be positive")
        self.name = name
        self.rate_per_minute = rate_per_minute
        self.capacity = max(1, burst)
        self.max_wait = max_wait
        self._interval = 60.0 / rate_per_minute
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(self.capacity)
        self._updated = clock()
        self.rejected = 0

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._updated
        if elapsed > 0:
            self._tokens = min(self.capacity, self._tokens + elapsed / self._interval)
            self._updated = now

    @property
    def available(self) -> float:
        self._refill()
        return self._tokens

    async def acquire(self) -> None:
        """Take one token, waiting for it if it matures within max_wait"""
        self._refill()
        self._tokens -= 1
        if self._tokens >= 0:
            return

        wait = -self._tokens * self._interval
        if wait > self.max_wait:
            self._tokens += 1
            self.rejected += 1
            logger.debug("Rate limit rejected request", provider=self.name, wait_seconds=round(wait, 3))
            raise RateLimitedError(
                self.name,
                f"{self.name} rate limit: next token in {wait:.2f}s",
                additional_context={"wait_seconds": round(wait, 3)},
            )

        try:
            await self._sleep(wait)
        except asyncio.CancelledError:
            # Give the reservation back so later waiters are not penalised
            self._tokens += 1
            raise
