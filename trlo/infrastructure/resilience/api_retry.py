"""Service for executing API calls with rate limiting and automatic retries.

Every attempt first takes a token from the shared RateLimiter. When the
remote service throttles a call (ThrottledError), the call is retried with
exponential backoff plus jitter, or after the server's retry hint when that
is longer. Any other error propagates immediately.
"""

import logging
import asyncio
import random
import time
from typing import Any, Awaitable, Callable, Coroutine, Optional

from trlo.infrastructure.resilience.rate_limiter import RateLimiter
from trlo.domain.errors import OperationTimeoutError, RateLimitExceededError, ThrottledError
from trlo.domain.events.batch_events import (
    ApiCallDeferred, DomainEvent, EventListener, RetryScheduled,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 5
DEFAULT_INITIAL_BACKOFF_S = 1.0
DEFAULT_BACKOFF_FACTOR = 2.0
DEFAULT_MAX_BACKOFF_S = 60.0
DEFAULT_JITTER_S = 0.5


class ApiRetryService:
    """Handles API call execution with rate limiting and throttle retries."""

    def __init__(
        self,
        rate_limiter: RateLimiter,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_backoff_s: float = DEFAULT_INITIAL_BACKOFF_S,
        backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
        max_backoff_s: float = DEFAULT_MAX_BACKOFF_S,
        jitter_s: float = DEFAULT_JITTER_S,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
        event_listener: Optional[EventListener] = None,
    ):
        """Initializes the ApiRetryService.

        Args:
            rate_limiter: The rate limiter instance to use.
            max_retries: Maximum number of retries after the first attempt.
            initial_backoff_s: Delay in seconds before the first retry.
            backoff_factor: Multiplier for the backoff delay (2 for exponential).
            max_backoff_s: Cap on the exponential part of the delay.
            jitter_s: Upper bound of the random jitter added to each delay.
            sleep: Async sleep, injectable for tests.
            rng: Random source for jitter, injectable for tests.
            event_listener: Optional callback receiving resilience events.
        """
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.rate_limiter = rate_limiter
        self.max_retries = max_retries
        self.initial_backoff_s = initial_backoff_s
        self.backoff_factor = backoff_factor
        self.max_backoff_s = max_backoff_s
        self.jitter_s = jitter_s
        self._sleep = sleep
        self._rng = rng or random.Random()
        self.event_listener = event_listener

        logger.info(
            f"ApiRetryService initialized: max_retries={max_retries}, "
            f"initial_backoff={initial_backoff_s}s, factor={backoff_factor}, "
            f"max_backoff={max_backoff_s}s, jitter={jitter_s}s"
        )

    def _dispatch_event(self, event: DomainEvent) -> None:
        logger.debug(f"EVENT: {event}")
        if self.event_listener is not None:
            self.event_listener(event)

    def compute_backoff(self, retry_number: int, retry_after: Optional[float] = None) -> float:
        """Returns the delay before retry number `retry_number` (0-based).

        `min(initial * factor^n, max_backoff) + jitter`, or the server hint
        when that is larger.
        """
        exponential = min(self.initial_backoff_s * (self.backoff_factor ** retry_number), self.max_backoff_s)
        delay = exponential + (self._rng.uniform(0, self.jitter_s) if self.jitter_s > 0 else 0.0)
        if retry_after is not None and retry_after > delay:
            return float(retry_after)
        return delay

    @staticmethod
    async def _attempt(call: Coroutine[Any, Any, Any], timeout: Optional[float],
                       operation_id: Optional[str]) -> Any:
        if timeout is None:
            return await call
        try:
            return await asyncio.wait_for(call, timeout)
        except asyncio.TimeoutError as e:
            raise OperationTimeoutError(timeout, operation_id=operation_id) from e

    async def execute_with_retry(
        self,
        func: Callable[..., Coroutine[Any, Any, Any]],
        *args: Any,
        endpoint_name: Optional[str] = None,
        operation_id: Optional[str] = None,
        attempt_timeout: Optional[float] = None,
        **kwargs: Any
    ) -> Any:
        """Executes an async function with rate limiting and throttle retries.

        Args:
            func: The async function (API call) to execute.
            *args: Positional arguments for the function.
            endpoint_name: Name of the endpoint/operation type, for logging/events.
            operation_id: Batch operation the call belongs to, for logging/events.
            attempt_timeout: Deadline in seconds for each individual attempt.
                Token waits and backoff sleeps do not count against it.
            **kwargs: Keyword arguments for the function.

        Returns:
            The result of the function call.

        Raises:
            RateLimitExceededError: If throttling persists past max_retries.
            OperationTimeoutError: If an attempt exceeds attempt_timeout.
            Exception: Any non-throttling error raised by the function.
        """
        effective_endpoint = endpoint_name or getattr(func, "__name__", "call")
        label = f"{operation_id}:{effective_endpoint}" if operation_id else effective_endpoint
        last_retry_after: Optional[float] = None

        for attempt in range(self.max_retries + 1):
            # 1. Wait for rate limit permission
            wait_duration = await self.rate_limiter.get_wait_time()
            if wait_duration > 0:
                self._dispatch_event(ApiCallDeferred(endpoint=effective_endpoint, wait_time_seconds=wait_duration,
                                                     operation_id=operation_id))
            await self.rate_limiter.wait_for_permission()

            # 2. Execute the function
            start_time = time.perf_counter()
            try:
                result = await self._attempt(func(*args, **kwargs), attempt_timeout, operation_id)
            except ThrottledError as e:
                last_retry_after = e.retry_after
                if attempt >= self.max_retries:
                    logger.error(f"Max retries ({self.max_retries}) reached for {label}; still throttled.")
                    break
                delay = self.compute_backoff(attempt, e.retry_after)
                logger.warning(
                    f"Throttled calling {label} on attempt {attempt + 1}/{self.max_retries + 1}. "
                    f"Waiting {delay:.2f}s..."
                )
                self._dispatch_event(RetryScheduled(endpoint=effective_endpoint, attempt_number=attempt + 1,
                                                    delay_seconds=delay, operation_id=operation_id))
                await self._sleep(delay)
                continue

            latency_ms = (time.perf_counter() - start_time) * 1000
            logger.debug(f"Call {label} succeeded on attempt {attempt + 1} in {latency_ms:.1f}ms")
            return result

        raise RateLimitExceededError(attempts=self.max_retries + 1, operation_id=operation_id,
                                     retry_after=last_retry_after)
