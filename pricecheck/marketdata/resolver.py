"""Canonical price resolver: cache tiers, then an asset-class-routed provider chain.

All verification code should obtain prices through this module. A miss
across every applicable provider is reported as ``None``; the only errors that
escape are ``ValidationError`` (bad input) and ``ConfigurationError``
(missing credentials).
"""

from __future__ import annotations

import logging
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Awaitable, Callable

from pricecheck.errors import (
    CircuitOpenError,
    ConfigurationError,
    ProviderError,
    SymbolNotFoundError,
    UnsupportedAssetError,
    ValidationError,
)
from pricecheck.marketdata.cache import PriceCache
from pricecheck.marketdata.providers.base import BaseProvider
from pricecheck.marketdata.symbols import (
    SymbolResolver,
    detect_currency,
    is_crypto,
    is_gram_gold,
    metal_of,
    normalize_asset_name,
)
from pricecheck.utils import as_date, date_range, is_weekend, last_trading_day, utc_today

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PriceQuery:
    """One normalized "price of asset on day" request as seen by the routes."""

    asset: str
    raw: str
    day: date
    asset_type: str | None
    crypto: bool
    today: bool
    metal: str | None
    gram_gold: bool


@dataclass(frozen=True)
class ProviderRoute:
    """Capability predicate plus fetch for one step of the fallback chain.

    ``fetch`` returns ``(price, currency)`` or None.
    """

    name: str
    applies: Callable[[PriceQuery], bool]
    fetch: Callable[[PriceQuery], Awaitable[tuple[float, str] | None]]


@dataclass
class ResolveTrace:
    """Which routes were tried for the last lookup (for logs and tests)."""

    chain: list[str] = field(default_factory=list)
    provider_used: str | None = None
    cache_hit: bool = False


# Scoped to the calling task.
_current_trace: ContextVar[ResolveTrace | None] = ContextVar("resolve_trace", default=None)


class PriceResolver:
    def __init__(
        self,
        *,
        cache: PriceCache,
        providers: dict[str, BaseProvider],
        symbols: SymbolResolver | None = None,
        routes: list[ProviderRoute] | None = None,
        prewarm_days: int = 30,
        today: Callable[[], date] = utc_today,
    ) -> None:
        self.cache = cache
        self.providers = providers
        self.symbols = symbols or SymbolResolver(
            search=providers["yahoo"].search if "yahoo" in providers else None
        )
        self.prewarm_days = prewarm_days
        self._today = today
        self.routes = routes if routes is not None else self.default_routes()

    @property
    def last_trace(self) -> ResolveTrace:
        """Trace of the most recent lookup made from the current task."""
        return _current_trace.get() or ResolveTrace()

    # ── route table ────────────────────────────────────────────────────

    def default_routes(self) -> list[ProviderRoute]:
        """Fallback order. Routes whose provider is not configured are left out."""
        candidates = [
            ProviderRoute("coinmarketcap", lambda q: q.crypto and q.today, self._fetch_crypto_spot),
            ProviderRoute("coingecko", lambda q: q.crypto and not q.today, self._fetch_crypto_history),
            ProviderRoute("usagold", lambda q: q.metal is not None and q.today, self._fetch_live_metal),
            ProviderRoute("twelvedata", lambda q: q.gram_gold, self._fetch_gram_gold),
            ProviderRoute("yahoo", lambda q: not q.gram_gold, self._fetch_daily_bars),
            ProviderRoute("stooq", lambda q: not q.today and not q.crypto, self._fetch_csv_fallback),
        ]
        return [r for r in candidates if r.name in self.providers]

    # ── public operations ──────────────────────────────────────────────

    async def get_price(
        self,
        asset: str,
        day: date | str,
        asset_type: str | None = None,
    ) -> float | None:
        """Price of ``asset`` on ``day``, or None when no source has it."""
        query = self._build_query(asset, day, asset_type)
        trace = ResolveTrace()
        _current_trace.set(trace)

        cached = await self.cache.get(query.asset, query.day, raw_name=query.raw)
        if cached is not None:
            trace.cache_hit = True
            return cached

        for route in self.routes:
            if not route.applies(query):
                continue
            try:
                hit = await route.fetch(query)
            except CircuitOpenError:
                trace.chain.append(f"{route.name}:open_circuit")
                continue
            except (SymbolNotFoundError, UnsupportedAssetError) as exc:
                trace.chain.append(f"{route.name}:skip")
                logger.debug("[resolver] %s skipped %s: %s", route.name, query.asset, exc)
                continue
            except ConfigurationError:
                raise
            except ProviderError as exc:
                trace.chain.append(f"{route.name}:error")
                logger.warning("[resolver] %s failed for %s %s: %s", route.name, query.asset, query.day, exc)
                continue
            except Exception:
                trace.chain.append(f"{route.name}:error")
                logger.exception("[resolver] %s raised unexpectedly for %s %s", route.name, query.asset, query.day)
                continue

            if not hit or hit[0] is None or hit[0] <= 0:
                trace.chain.append(f"{route.name}:no_data")
                continue

            price, currency = hit
            await self.cache.put(query.asset, query.day, price, currency, route.name)
            trace.chain.append(f"{route.name}:hit")
            trace.provider_used = route.name
            logger.info("[resolver] %s %s = %s (%s)", query.asset, query.day, price, route.name)
            return price

        logger.info(
            "[resolver] no price for %s on %s (chain: %s)",
            query.asset, query.day, ", ".join(trace.chain) or "none",
        )
        return None

    async def get_price_with_fallback(
        self,
        asset: str,
        day: date | str,
        asset_type: str | None = None,
        max_lookback_days: int = 5,
    ) -> float | None:
        """``get_price``, then walk back up to ``max_lookback_days`` trading days.

        Weekends are skipped for non-crypto assets; the walk never goes more than
        ``2 * max_lookback_days`` calendar days back.
        """
        start = as_date(day)
        price = await self.get_price(asset, start, asset_type)
        if price is not None:
            return price

        crypto = is_crypto(asset, asset_type)
        trading_days = 0
        days_back = 1
        while trading_days < max_lookback_days and days_back <= max_lookback_days * 2:
            candidate = start - timedelta(days=days_back)
            days_back += 1
            if not crypto and is_weekend(candidate):
                continue
            trading_days += 1
            price = await self.get_price(asset, candidate, asset_type)
            if price is not None:
                logger.info(
                    "[resolver] %s: using %s (%d trading day(s) before %s)",
                    asset, candidate, trading_days, start,
                )
                return price
        return None

    async def get_price_range(
        self,
        asset: str,
        start: date | str,
        end: date | str,
        asset_type: str | None = None,
    ) -> dict[date, float]:
        """Daily prices in [start, end] from cache, topped up with one range fetch."""
        first, last = as_date(start), as_date(end)
        if last < first:
            raise ValidationError(f"range end {last} is before start {first}")
        query = self._build_query(asset, last, asset_type)
        last = min(last, self._today())

        prices = await self.cache.get_range(query.asset, first, last)
        expected = [d for d in date_range(first, last) if query.crypto or not is_weekend(d)]
        if all(d in prices for d in expected):
            return prices

        name = "twelvedata" if query.gram_gold else "yahoo"
        provider = self.providers.get(name)
        if provider is None:
            return prices
        try:
            if query.gram_gold:
                symbol = query.asset
            else:
                symbol = await self.symbols.resolve(query.raw, query.asset_type)
            fetched = await provider.price_range(symbol, first, last)
        except ConfigurationError:
            raise
        except (CircuitOpenError, SymbolNotFoundError, UnsupportedAssetError, ProviderError) as exc:
            logger.info("[resolver] range fetch for %s via %s unavailable: %s", query.asset, name, exc)
            return prices

        await self.cache.put_many(
            query.asset, fetched, detect_currency(symbol, query.asset_type), name
        )
        merged = dict(prices)
        merged.update({d: p for d, p in fetched.items() if first <= d <= last})
        return dict(sorted(merged.items()))

    def get_provider_health(self) -> dict[str, Any]:
        return {
            "providers": {name: p.get_stats() for name, p in self.providers.items()},
            "cache": self.cache.stats,
        }

    # ── route implementations ──────────────────────────────────────────

    async def _fetch_crypto_spot(self, q: PriceQuery) -> tuple[float, str] | None:
        price = await self.providers["coinmarketcap"].price_at(q.asset, q.day)
        return (price, "USD") if price else None

    async def _fetch_crypto_history(self, q: PriceQuery) -> tuple[float, str] | None:
        price = await self.providers["coingecko"].price_at(q.asset, q.day)
        return (price, "USD") if price else None

    async def _fetch_live_metal(self, q: PriceQuery) -> tuple[float, str] | None:
        price = await self.providers["usagold"].price_at(q.metal or "", q.day)
        return (price, "USD") if price else None

    async def _fetch_gram_gold(self, q: PriceQuery) -> tuple[float, str] | None:
        price = await self.providers["twelvedata"].price_at(q.asset, q.day)
        return (price, "TRY") if price else None

    async def _fetch_daily_bars(self, q: PriceQuery) -> tuple[float, str] | None:
        """Fetch ±``prewarm_days`` around the day and store the whole window."""
        symbol = await self.symbols.resolve(q.raw, q.asset_type)
        currency = detect_currency(symbol, q.asset_type)
        start = q.day - timedelta(days=self.prewarm_days)
        end = min(q.day + timedelta(days=self.prewarm_days), self._today())
        if end < q.day:
            end = q.day
        prices = await self.providers["yahoo"].price_range(symbol, start, end)
        if prices:
            await self.cache.put_many(q.asset, prices, currency, "yahoo")
        price = prices.get(q.day)
        if price is None and prices:
            logger.info("[resolver] yahoo returned %d bars for %s but none on %s", len(prices), symbol, q.day)
        return (price, currency) if price else None

    async def _fetch_csv_fallback(self, q: PriceQuery) -> tuple[float, str] | None:
        symbol = SymbolResolver.lookup_alias(q.raw, q.asset_type) or q.asset
        price = await self.providers["stooq"].price_at(symbol, q.day)
        return (price, detect_currency(symbol, q.asset_type)) if price else None

    # ── helpers ────────────────────────────────────────────────────────

    def _build_query(self, asset: str, day: date | str, asset_type: str | None) -> PriceQuery:
        if not asset or not str(asset).strip():
            raise ValidationError("asset name is empty")
        requested = as_date(day)
        crypto = is_crypto(asset, asset_type)
        resolved_day = requested if crypto else last_trading_day(requested)
        return PriceQuery(
            asset=normalize_asset_name(asset),
            raw=str(asset).strip(),
            day=resolved_day,
            asset_type=asset_type.lower() if asset_type else None,
            crypto=crypto,
            today=resolved_day == self._today(),
            metal=metal_of(asset),
            gram_gold=is_gram_gold(asset),
        )
