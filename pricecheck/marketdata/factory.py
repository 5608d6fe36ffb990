"""Startup wiring: one rate limiter and one circuit breaker per provider."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from pricecheck.config import Settings, get_settings
from pricecheck.marketdata.cache import PriceCache, SqlLegacyStore, SqlPriceStore
from pricecheck.marketdata.circuit import CircuitBreaker
from pricecheck.marketdata.providers import (
    BaseProvider,
    CoinGeckoProvider,
    CoinMarketCapProvider,
    StooqProvider,
    TwelveDataProvider,
    UsaGoldProvider,
    YahooProvider,
)
from pricecheck.marketdata.ratelimit import RateLimiter
from pricecheck.marketdata.resolver import PriceResolver

logger = logging.getLogger(__name__)

_PROVIDER_CLASSES: dict[str, type[BaseProvider]] = {
    "yahoo": YahooProvider,
    "stooq": StooqProvider,
    "coinmarketcap": CoinMarketCapProvider,
    "coingecko": CoinGeckoProvider,
    "usagold": UsaGoldProvider,
    "twelvedata": TwelveDataProvider,
}


def build_providers(
    settings: Settings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[str, BaseProvider]:
    s = settings or get_settings()
    providers: dict[str, BaseProvider] = {}
    for name, cls in _PROVIDER_CLASSES.items():
        if name == "coinmarketcap" and not s.coinmarketcap_api_key:
            logger.info("[factory] no CoinMarketCap key, crypto spot goes to the next provider")
            continue
        kwargs: dict[str, Any] = {
            "limiter": RateLimiter(
                name,
                rps=s.provider_rps(name),
                max_retries=s.rate_limit_max_retries,
                base_delay=s.rate_limit_base_delay,
                factor=s.rate_limit_factor,
                backoff_jitter=s.rate_limit_jitter,
            ),
            "breaker": CircuitBreaker(
                name=name,
                failure_threshold=s.circuit_failure_threshold,
                reset_timeout=s.circuit_reset_timeout,
            ),
            "timeout": s.request_timeout,
            "max_retries": s.max_retries,
            "retry_base_delay": s.retry_base_delay,
            "transport": transport,
        }
        if name == "coinmarketcap":
            kwargs["api_key"] = s.coinmarketcap_api_key
        elif name == "coingecko":
            kwargs["api_key"] = s.coingecko_api_key
        providers[name] = cls(**kwargs)
    return providers


def build_resolver(
    settings: Settings | None = None,
    *,
    cache: PriceCache | None = None,
    providers: dict[str, BaseProvider] | None = None,
) -> PriceResolver:
    """Construct a resolver with database-backed cache tiers and every provider."""
    s = settings or get_settings()
    if cache is None:
        cache = PriceCache(store=SqlPriceStore(), legacy=SqlLegacyStore())
    if providers is None:
        providers = build_providers(s)
    logger.info("[factory] resolver with providers: %s", ", ".join(providers))
    return PriceResolver(cache=cache, providers=providers, prewarm_days=s.prewarm_days)
