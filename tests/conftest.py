from __future__ import annotations

from typing import Any, Callable

import httpx
import pytest

from pricecheck.marketdata.circuit import CircuitBreaker
from pricecheck.marketdata.providers.base import BaseProvider
from pricecheck.marketdata.ratelimit import RateLimiter


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_provider() -> Callable[..., BaseProvider]:
    """Build a provider with an unpaced limiter, instant retries and an optional mock transport."""

    def _make(
        cls: type[BaseProvider],
        handler: Callable[[httpx.Request], httpx.Response] | None = None,
        *,
        failure_threshold: int = 8,
        max_retries: int = 0,
        clock: Callable[[], float] | None = None,
        **kwargs: Any,
    ) -> BaseProvider:
        breaker_kwargs: dict[str, Any] = {"name": cls.name, "failure_threshold": failure_threshold}
        if clock is not None:
            breaker_kwargs["clock"] = clock
        return cls(
            limiter=RateLimiter(cls.name, rps=0, base_delay=0.0, backoff_jitter=0.0, sleep=no_sleep),
            breaker=CircuitBreaker(**breaker_kwargs),
            max_retries=max_retries,
            retry_base_delay=0.0,
            transport=httpx.MockTransport(handler) if handler else None,
            sleep=no_sleep,
            **kwargs,
        )

    return _make
