"""Three-tier price cache: process memory → asset_prices table → legacy predictions.

Reads fall through the tiers in order. A legacy hit schedules a background
backfill into ``asset_prices``. Every write is best effort: storage errors are
logged and swallowed so a flaky database never turns a known price into a
failure.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date
from typing import Any, Protocol

from sqlalchemy import Select, select
from sqlalchemy.dialects.postgresql import insert

from pricecheck.db.database import get_session
from pricecheck.db.models import AssetPrice, CombinedPrediction
from pricecheck.marketdata.symbols import detect_currency
from pricecheck.utils import utc_now

logger = logging.getLogger(__name__)

LEGACY_BACKFILL_SOURCE = "legacy_backfill"


class PriceStore(Protocol):
    async def get(self, asset: str, day: date) -> float | None: ...

    async def get_range(self, asset: str, start: date, end: date) -> dict[date, float]: ...

    async def upsert_many(
        self, asset: str, prices: dict[date, float], currency: str, source: str
    ) -> None: ...


class LegacyStore(Protocol):
    async def find_price(self, asset: str, day: date) -> float | None: ...


# ── SQL-backed tiers ──────────────────────────────────────────────────

class SqlPriceStore:
    """Persistent keyed table, unique on (asset, date)."""

    async def get(self, asset: str, day: date) -> float | None:
        async with get_session() as session:
            stmt = (
                select(AssetPrice.price)
                .where(AssetPrice.asset == asset, AssetPrice.price_date == day)
                .limit(1)
            )
            return (await session.execute(stmt)).scalar_one_or_none()

    async def get_range(self, asset: str, start: date, end: date) -> dict[date, float]:
        async with get_session() as session:
            stmt = select(AssetPrice.price_date, AssetPrice.price).where(
                AssetPrice.asset == asset,
                AssetPrice.price_date >= start,
                AssetPrice.price_date <= end,
            )
            rows = (await session.execute(stmt)).all()
        return {d: float(p) for d, p in rows}

    async def upsert_many(
        self, asset: str, prices: dict[date, float], currency: str, source: str
    ) -> None:
        if not prices:
            return
        now = utc_now()
        values = [
            {
                "asset": asset,
                "price_date": d,
                "price": float(p),
                "currency": currency,
                "source": source,
                "recorded_at": now,
            }
            for d, p in sorted(prices.items())
        ]
        stmt = insert(AssetPrice).values(values)
        stmt = stmt.on_conflict_do_update(
            constraint="uq_asset_prices_asset_date",
            set_={
                "price": stmt.excluded.price,
                "currency": stmt.excluded.currency,
                "source": stmt.excluded.source,
                "recorded_at": stmt.excluded.recorded_at,
            },
        )
        async with get_session() as session:
            await session.execute(stmt)


def escape_like(value: str) -> str:
    """Make ``value`` match literally in a LIKE pattern escaped with a backslash."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def legacy_price_query(asset: str, day: date) -> Select[Any]:
    """Case-insensitive exact match on the asset name of an old prediction."""
    return (
        select(CombinedPrediction.asset_entry_price)
        .where(
            CombinedPrediction.asset.ilike(escape_like(asset), escape="\\"),
            CombinedPrediction.post_date == day,
            CombinedPrediction.asset_entry_price.is_not(None),
            CombinedPrediction.asset_entry_price > 0,
        )
        .limit(1)
    )


class SqlLegacyStore:
    """Read-only lookup of entry prices stored on old prediction rows."""

    async def find_price(self, asset: str, day: date) -> float | None:
        async with get_session() as session:
            return (await session.execute(legacy_price_query(asset, day))).scalar_one_or_none()


# ── Cache facade ──────────────────────────────────────────────────────

class PriceCache:
    def __init__(self, store: PriceStore | None = None, legacy: LegacyStore | None = None) -> None:
        self._store = store
        self._legacy = legacy
        self._memory: dict[str, float] = {}
        self._backfills: set[asyncio.Task[Any]] = set()
        self._stats = {"memory": 0, "persistent": 0, "legacy": 0, "miss": 0, "write_errors": 0}

    @staticmethod
    def key(asset: str, day: date) -> str:
        return f"{asset.upper()}:{day.isoformat()}"

    def peek(self, asset: str, day: date) -> float | None:
        """Memory tier only."""
        return self._memory.get(self.key(asset, day))

    async def get(self, asset: str, day: date, *, raw_name: str | None = None) -> float | None:
        """Look ``asset`` up in each tier. ``raw_name`` widens the legacy search."""
        cached = self.peek(asset, day)
        if cached is not None:
            self._stats["memory"] += 1
            return cached

        if self._store is not None:
            try:
                price = await self._store.get(asset, day)
            except Exception:
                logger.warning("[cache] persistent read failed for %s %s", asset, day, exc_info=True)
                price = None
            if price is not None and price > 0:
                self._stats["persistent"] += 1
                self._memory[self.key(asset, day)] = float(price)
                return float(price)

        if self._legacy is not None:
            names = [asset] + ([raw_name] if raw_name and raw_name.upper() != asset.upper() else [])
            for name in names:
                try:
                    price = await self._legacy.find_price(name, day)
                except Exception:
                    logger.warning("[cache] legacy read failed for %s %s", name, day, exc_info=True)
                    continue
                if price is not None and price > 0:
                    self._stats["legacy"] += 1
                    self._memory[self.key(asset, day)] = float(price)
                    self._schedule_backfill(asset, day, float(price))
                    return float(price)

        self._stats["miss"] += 1
        return None

    async def get_range(self, asset: str, start: date, end: date) -> dict[date, float]:
        """Persistent-tier range read merged with whatever memory already holds."""
        out: dict[date, float] = {}
        if self._store is not None:
            try:
                out = await self._store.get_range(asset, start, end)
            except Exception:
                logger.warning("[cache] persistent range read failed for %s", asset, exc_info=True)
        for d, p in out.items():
            self._memory[self.key(asset, d)] = p
        prefix = f"{asset.upper()}:"
        for k, p in self._memory.items():
            if k.startswith(prefix):
                d = date.fromisoformat(k[len(prefix):])
                if start <= d <= end:
                    out.setdefault(d, p)
        return out

    async def put(self, asset: str, day: date, price: float, currency: str, source: str) -> None:
        await self.put_many(asset, {day: price}, currency, source)

    async def put_many(
        self, asset: str, prices: dict[date, float], currency: str, source: str
    ) -> None:
        valid = {d: float(p) for d, p in prices.items() if p is not None and p > 0}
        if not valid:
            return
        for d, p in valid.items():
            self._memory[self.key(asset, d)] = p
        if self._store is None:
            return
        try:
            await self._store.upsert_many(asset, valid, currency, source)
            logger.debug("[cache] stored %d prices for %s (%s)", len(valid), asset, source)
        except Exception:
            self._stats["write_errors"] += 1
            logger.warning("[cache] write failed for %s (%d rows)", asset, len(valid), exc_info=True)

    async def drain(self) -> None:
        """Wait for outstanding legacy backfills."""
        if self._backfills:
            await asyncio.gather(*list(self._backfills), return_exceptions=True)

    def clear_memory(self) -> None:
        self._memory.clear()

    @property
    def stats(self) -> dict[str, int]:
        return dict(self._stats)

    def _schedule_backfill(self, asset: str, day: date, price: float) -> None:
        task = asyncio.create_task(
            self.put(asset, day, price, detect_currency(asset), LEGACY_BACKFILL_SOURCE)
        )
        self._backfills.add(task)
        task.add_done_callback(self._backfills.discard)
