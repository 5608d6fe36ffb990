"""Per-provider circuit breaker.

States:
- CLOSED: normal operation, counting consecutive failures
- OPEN: after ``failure_threshold`` failures, every call fails fast
- HALF_OPEN: after ``reset_timeout``, exactly one probe call is admitted

Usage::

    breaker = CircuitBreaker(name="yahoo", failure_threshold=8, reset_timeout=120)

    async def fetch():
        breaker.guard()          # raises CircuitOpenError when open
        try:
            result = await do_fetch()
        except ProviderError as exc:
            breaker.record_failure(exc)
            raise
        breaker.record_success()
        return result
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from pricecheck.errors import CircuitOpenError

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreaker:
    name: str = "circuit"
    failure_threshold: int = 8
    reset_timeout: float = 120.0
    clock: Callable[[], float] = time.monotonic

    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failure_count: int = field(default=0, init=False)
    _opened_at: float | None = field(default=None, init=False)
    _probe_in_flight: bool = field(default=False, init=False)
    _last_request_at: float | None = field(default=None, init=False)

    @property
    def state(self) -> CircuitState:
        """Current state; OPEN reads as HALF_OPEN once the cooldown has elapsed."""
        if self._state == CircuitState.OPEN and self._opened_at is not None:
            if self.clock() - self._opened_at >= self.reset_timeout:
                return CircuitState.HALF_OPEN
        return self._state

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    @property
    def consecutive_failures(self) -> int:
        return self._failure_count

    def guard(self) -> None:
        """Admit or reject a call. Raises ``CircuitOpenError`` when rejected.

        The guard and the matching ``record_*`` call must not be separated by
        another ``guard`` on the probe path; in HALF_OPEN only the first caller
        gets through until the probe resolves.
        """
        state = self.state
        if state == CircuitState.OPEN:
            raise CircuitOpenError(self.name, self._retry_in())
        if state == CircuitState.HALF_OPEN:
            if self._probe_in_flight:
                raise CircuitOpenError(self.name, 0.0)
            self._probe_in_flight = True
            logger.info("[%s] circuit half-open, allowing probe request", self.name)
        self._last_request_at = self.clock()

    def record_success(self) -> None:
        if self._state != CircuitState.CLOSED:
            logger.info("[%s] circuit closed after successful probe", self.name)
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at = None
        self._probe_in_flight = False

    def record_failure(self, error: BaseException | None = None) -> None:
        probing = self._probe_in_flight
        self._probe_in_flight = False
        self._failure_count += 1

        if probing or self._failure_count >= self.failure_threshold:
            if self._state != CircuitState.OPEN or probing:
                logger.warning(
                    "[%s] circuit OPEN after %d failures (last error: %s)",
                    self.name, self._failure_count, error,
                )
            self._state = CircuitState.OPEN
            self._opened_at = self.clock()
        else:
            logger.debug(
                "[%s] failure %d/%d: %s",
                self.name, self._failure_count, self.failure_threshold, error,
            )

    def release_probe(self) -> None:
        """Give back a probe slot when the call ended without a verdict (skip, not found)."""
        self._probe_in_flight = False

    def reset(self) -> None:
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at = None
        self._probe_in_flight = False

    def snapshot(self) -> dict[str, Any]:
        return {
            "circuit_open": self.is_open,
            "state": self.state.value,
            "consecutive_failures": self._failure_count,
            "last_opened_at": self._opened_at,
            "last_request_at": self._last_request_at,
        }

    def _retry_in(self) -> float:
        if self._opened_at is None:
            return 0.0
        return max(0.0, self.reset_timeout - (self.clock() - self._opened_at))
