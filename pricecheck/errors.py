"""Exception hierarchy for price resolution and verification.

Only ``ConfigurationError`` and ``ValidationError`` are meant to reach
callers of the public operations. Everything under ``ProviderError`` and the
skip-style errors are consumed by the resolver, which moves on to the next
provider and ultimately reports an unknown price as ``None``.
"""

from __future__ import annotations


class PriceCheckError(Exception):
    """Base class for all pricecheck errors."""


class ConfigurationError(PriceCheckError):
    """Missing or invalid configuration, e.g. an absent API key."""


class ValidationError(PriceCheckError):
    """Malformed input passed to a public operation."""


# ── Provider failures (count against the circuit breaker) ─────────────

class ProviderError(PriceCheckError):
    """Transient provider failure: timeout, 5xx, transport error."""

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        super().__init__(f"{provider}: {message}")


class MalformedPayloadError(ProviderError):
    """Provider answered, but the payload could not be understood."""


class RateLimitExhaustedError(ProviderError):
    """Throttling backoff ran out of retries."""


# ── Signals handled outside the failure path ──────────────────────────

class ThrottledError(PriceCheckError):
    """Provider signalled throttling (HTTP 429 or equivalent)."""

    def __init__(self, provider: str, retry_after: float | None = None) -> None:
        self.provider = provider
        self.retry_after = retry_after
        super().__init__(f"{provider}: throttled")


class SymbolNotFoundError(PriceCheckError):
    """Provider does not know the symbol. Not retried, not a breaker failure."""

    def __init__(self, provider: str, symbol: str) -> None:
        self.provider = provider
        self.symbol = symbol
        super().__init__(f"{provider}: symbol not found: {symbol}")


class UnsupportedAssetError(PriceCheckError):
    """Provider cannot serve this asset at all (no id mapping, untracked metal)."""

    def __init__(self, provider: str, asset: str) -> None:
        self.provider = provider
        self.asset = asset
        super().__init__(f"{provider}: unsupported asset: {asset}")


class CircuitOpenError(PriceCheckError):
    """Raised when a circuit breaker is open and blocking calls."""

    def __init__(self, name: str, retry_in: float = 0.0) -> None:
        self.name = name
        self.retry_in = retry_in
        super().__init__(f"{name}: circuit open, retry in {retry_in:.1f}s")
