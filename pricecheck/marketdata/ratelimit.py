"""Per-provider request pacing and throttling backoff.

Usage::

    limiter = RateLimiter("yahoo", rps=2.0)

    async with limiter:                 # plain pacing
        await do_api_call()

    await limiter.run(do_api_call)      # pacing + backoff on ThrottledError
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Any, Awaitable, Callable, TypeVar

from pricecheck.errors import RateLimitExhaustedError, ThrottledError
from pricecheck.utils import backoff_delay

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RateLimiter:
    """Minimum-interval gate with jitter, safe under concurrent callers.

    Each caller reserves the next free slot under the lock and sleeps after
    releasing it, so concurrent lookups are spread out without holding the
    lock across the wait.
    """

    def __init__(
        self,
        name: str,
        rps: float,
        *,
        jitter: float = 0.25,
        max_retries: int = 5,
        base_delay: float = 2.0,
        factor: float = 2.0,
        backoff_jitter: float = 0.5,
        max_delay: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.name = name
        self._interval = 1.0 / rps if rps > 0 else 0.0
        self._jitter = jitter
        self._max_retries = max_retries
        self._base_delay = base_delay
        self._factor = factor
        self._backoff_jitter = backoff_jitter
        self._max_delay = max_delay
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._next_slot = 0.0
        self._last_request_at: float | None = None
        self._throttled = 0

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def last_request_at(self) -> float | None:
        return self._last_request_at

    @property
    def throttle_count(self) -> int:
        return self._throttled

    async def acquire(self) -> None:
        """Wait for this provider's next request slot."""
        async with self._lock:
            now = self._clock()
            slot = max(now, self._next_slot)
            self._next_slot = slot + self._interval
            self._last_request_at = slot
        wait = slot - now
        if self._interval and self._jitter:
            wait += random.uniform(0.0, self._interval * self._jitter)
        if wait > 0:
            await self._sleep(wait)

    async def __aenter__(self) -> RateLimiter:
        await self.acquire()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        return None

    async def run(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Pace ``fn`` and back off exponentially while it signals throttling.

        Raises ``RateLimitExhaustedError`` once ``max_retries`` backoffs are used.
        """
        attempt = 0
        while True:
            await self.acquire()
            try:
                return await fn()
            except ThrottledError as exc:
                self._throttled += 1
                if attempt >= self._max_retries:
                    raise RateLimitExhaustedError(
                        self.name, f"throttled after {attempt} backoff retries"
                    ) from exc
                delay = backoff_delay(
                    self._base_delay,
                    attempt,
                    factor=self._factor,
                    jitter=self._backoff_jitter,
                    cap=self._max_delay,
                )
                if exc.retry_after:
                    delay = max(delay, exc.retry_after)
                logger.warning(
                    "[%s] throttled (attempt %d/%d), backing off %.1fs",
                    self.name, attempt + 1, self._max_retries, delay,
                )
                attempt += 1
                await self._sleep(delay)
