"""Implementation of a rate limiter.

Controls the frequency of outgoing requests to prevent hitting API rate limits.
Uses a token bucket: `capacity` tokens, refilled continuously at `refill_rate`
tokens per second.
"""

import time
import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

# Trello allows 100 requests per 10 seconds per token.
DEFAULT_CAPACITY = 100
DEFAULT_REFILL_RATE = 10.0  # tokens per second


class RateLimiter:
    """Token bucket rate limiter shared by every worker of a batch."""

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        refill_rate: float = DEFAULT_REFILL_RATE,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initializes the rate limiter.

        Args:
            capacity: Maximum number of tokens (burst size).
            refill_rate: Tokens added per second.
            clock: Monotonic clock, injectable for tests.
            sleep: Async sleep, injectable for tests.
        """
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        if refill_rate <= 0:
            raise ValueError("refill_rate must be positive")
        self.capacity = capacity
        self.refill_rate = refill_rate
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(capacity)
        self._last_refill = clock()
        self._lock = asyncio.Lock()
        logger.info(f"RateLimiter initialized: capacity={capacity}, refill={refill_rate}/s")

    def _refill(self) -> None:
        """Adds the tokens accrued since the last refill."""
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill)
        self._tokens = min(float(self.capacity), self._tokens + elapsed * self.refill_rate)
        self._last_refill = now

    async def wait_for_permission(self) -> float:
        """Waits until a token is available and takes it.

        Returns:
            Total seconds spent waiting.
        """
        waited = 0.0
        while True:
            async with self._lock:
                self._refill()
                if self._tokens >= 1:
                    self._tokens -= 1
                    logger.debug("Rate limit permission granted.")
                    return waited
                wait_time = (1 - self._tokens) / self.refill_rate

            logger.debug(f"Rate limit reached. Waiting for {wait_time:.2f} seconds.")
            await self._sleep(wait_time)
            waited += wait_time
            # Loop again to re-check condition after waiting

    async def get_wait_time(self) -> float:
        """Estimates the time needed before the next request can be made."""
        async with self._lock:
            self._refill()
            if self._tokens >= 1:
                return 0.0
            return (1 - self._tokens) / self.refill_rate

    @property
    def available_tokens(self) -> float:
        """Tokens currently in the bucket (without refilling)."""
        return self._tokens
