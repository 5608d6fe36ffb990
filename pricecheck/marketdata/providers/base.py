"""Abstract provider adapter with the shared guarded-request path."""

from __future__ import annotations

import abc
import asyncio
import logging
from datetime import date
from typing import Any, Awaitable, Callable, TypeVar

import httpx

from pricecheck.errors import (
    ConfigurationError,
    MalformedPayloadError,
    ProviderError,
    RateLimitExhaustedError,
    SymbolNotFoundError,
    ThrottledError,
    UnsupportedAssetError,
)
from pricecheck.marketdata.circuit import CircuitBreaker
from pricecheck.marketdata.ratelimit import RateLimiter
from pricecheck.utils import backoff_delay

logger = logging.getLogger(__name__)

T = TypeVar("T")

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class BaseProvider(abc.ABC):
    """Every upstream price source inherits from this.

    Subclasses implement ``price_at`` (and ``price_range`` when the upstream
    can return a window cheaply) and route each network request through
    ``call()``, which applies, in order: circuit breaker, rate limiter,
    explicit timeout, transient-failure retries, failure classification.
    """

    name: str = "provider"
    supports_range: bool = False

    def __init__(
        self,
        *,
        limiter: RateLimiter | None = None,
        breaker: CircuitBreaker | None = None,
        timeout: float = 15.0,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.limiter = limiter or RateLimiter(self.name, rps=1.0)
        self.breaker = breaker or CircuitBreaker(name=self.name)
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self._transport = transport
        self._sleep = sleep
        self._calls = 0
        self._failures = 0

    # ── adapter contract ───────────────────────────────────────────────

    @abc.abstractmethod
    async def price_at(self, symbol: str, day: date) -> float | None:
        """Closing (or live, for today-only sources) price, or None when absent."""

    async def price_range(self, symbol: str, start: date, end: date) -> dict[date, float]:
        """Daily prices keyed by calendar date. Only for ``supports_range`` providers."""
        raise NotImplementedError(f"{self.name} does not support range fetches")

    # ── guarded request path ───────────────────────────────────────────

    async def call(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run one upstream request under breaker, limiter, timeout and retries.

        Raises:
            CircuitOpenError: the breaker rejected the call, nothing was sent.
            SymbolNotFoundError / UnsupportedAssetError: skip this provider.
            ConfigurationError: missing credentials.
            ProviderError: retries exhausted (already counted by the breaker).
        """
        self.breaker.guard()
        attempt = 0
        while True:
            self._calls += 1
            try:
                result = await self.limiter.run(lambda: self._with_timeout(fn))
            except SymbolNotFoundError:
                # The provider answered; that is a healthy round trip.
                self.breaker.record_success()
                raise
            except (UnsupportedAssetError, ConfigurationError):
                self.breaker.release_probe()
                raise
            except RateLimitExhaustedError as exc:
                self._failures += 1
                self.breaker.record_failure(exc)
                raise
            except ProviderError as exc:
                if attempt >= self.max_retries:
                    self._failures += 1
                    self.breaker.record_failure(exc)
                    raise
                delay = backoff_delay(self.retry_base_delay, attempt, jitter=0.25, cap=30.0)
                logger.info(
                    "[%s] %s (attempt %d/%d), retrying in %.1fs",
                    self.name, exc, attempt + 1, self.max_retries + 1, delay,
                )
                attempt += 1
                await self._sleep(delay)
                continue
            except BaseException:
                self.breaker.release_probe()
                raise
            self.breaker.record_success()
            return result

    async def _with_timeout(self, fn: Callable[[], Awaitable[T]]) -> T:
        try:
            return await asyncio.wait_for(fn(), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise ProviderError(self.name, f"timeout after {self.timeout:.0f}s") from exc
        except httpx.TimeoutException as exc:
            raise ProviderError(self.name, f"timeout: {exc}") from exc
        except httpx.TransportError as exc:
            raise ProviderError(self.name, f"transport error: {exc}") from exc

    # ── HTTP helpers ───────────────────────────────────────────────────

    def client(self, **kwargs: Any) -> httpx.AsyncClient:
        headers = {"User-Agent": USER_AGENT}
        headers.update(kwargs.pop("headers", {}))
        return httpx.AsyncClient(
            timeout=self.timeout,
            headers=headers,
            transport=self._transport,
            follow_redirects=True,
            **kwargs,
        )

    async def get(
        self,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        symbol: str | None = None,
    ) -> httpx.Response:
        """GET ``url`` and classify the status code.

        404 with a ``symbol`` becomes ``SymbolNotFoundError``; 429 becomes
        ``ThrottledError``; other non-2xx become ``ProviderError``.
        """
        async with self.client(headers=headers or {}) as client:
            resp = await client.get(url, params=params)
        self.check_status(resp, symbol=symbol)
        return resp

    def check_status(self, resp: httpx.Response, *, symbol: str | None = None) -> None:
        code = resp.status_code
        if code == 429:
            retry_after = self._safe_float(resp.headers.get("Retry-After"), default=None)
            raise ThrottledError(self.name, retry_after)
        if code == 404 and symbol is not None:
            raise SymbolNotFoundError(self.name, symbol)
        if code in (401, 403):
            raise ProviderError(self.name, f"AUTH_FAIL (HTTP {code})")
        if code >= 400:
            raise ProviderError(self.name, f"HTTP {code}")

    def json(self, resp: httpx.Response) -> Any:
        try:
            return resp.json()
        except ValueError as exc:
            raise MalformedPayloadError(self.name, "response is not JSON") from exc

    # ── stats ──────────────────────────────────────────────────────────

    def get_stats(self) -> dict[str, Any]:
        return {
            "provider": self.name,
            "calls": self._calls,
            "failures": self._failures,
            "throttled": self.limiter.throttle_count,
            **self.breaker.snapshot(),
        }

    @staticmethod
    def _safe_float(v: Any, default: float | None = 0.0) -> float | None:
        try:
            if v is None:
                return default
            return float(v)
        except (TypeError, ValueError):
            return default

