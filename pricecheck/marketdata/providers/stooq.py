"""Stooq historical CSV fallback."""

from __future__ import annotations

import csv
import logging
from datetime import date, datetime, timedelta
from io import StringIO

from pricecheck.errors import UnsupportedAssetError
from pricecheck.marketdata.providers.base import BaseProvider

logger = logging.getLogger(__name__)

_STOOQ_HISTORY_URL = "https://stooq.com/q/d/l/"

# Calendar days walked back on a date miss (weekends, holidays).
_PRIOR_DAY_RETRIES = 3

_BIST_SYMBOLS = {"XU100.IS", "BIST100", "XU100"}


def to_stooq_symbol(symbol: str) -> str | None:
    """Translate a Yahoo-style ticker into Stooq's suffix convention."""
    s = (symbol or "").strip()
    if not s:
        return None
    upper = s.upper()
    if upper in _BIST_SYMBOLS:
        return "^xutry"
    if upper.endswith("-USD"):
        return None
    if upper.startswith("^"):
        return s.lower()
    if upper.endswith("=X"):
        return upper[:-2].lower()
    if upper.endswith("=F"):
        return f"{upper[:-2].lower()}.f"
    if "." in upper:
        return None
    return f"{s.lower()}.us"


class StooqProvider(BaseProvider):
    name = "stooq"
    supports_range = True

    async def price_at(self, symbol: str, day: date) -> float | None:
        """Close on ``day``, else the closest of the 3 preceding calendar days."""
        prices = await self.price_range(symbol, day - timedelta(days=_PRIOR_DAY_RETRIES), day)
        for offset in range(_PRIOR_DAY_RETRIES + 1):
            d = day - timedelta(days=offset)
            if d in prices:
                if offset:
                    logger.info("[stooq] %s: no bar on %s, using %s", symbol, day, d)
                return prices[d]
        return None

    async def price_range(self, symbol: str, start: date, end: date) -> dict[date, float]:
        stooq_symbol = to_stooq_symbol(symbol)
        if not stooq_symbol:
            raise UnsupportedAssetError(self.name, symbol)

        async def _fetch() -> dict[date, float]:
            resp = await self.get(
                _STOOQ_HISTORY_URL,
                params={
                    "s": stooq_symbol,
                    "d1": start.strftime("%Y%m%d"),
                    "d2": end.strftime("%Y%m%d"),
                    "i": "d",
                },
            )
            return self._parse_csv(resp.text)

        return await self.call(_fetch)

    def _parse_csv(self, body: str) -> dict[date, float]:
        text = (body or "").strip()
        if not text or text.lower().startswith("no data"):
            return {}
        header = text.splitlines()[0]
        delimiter = ";" if ";" in header else ","
        reader = csv.reader(StringIO(text), delimiter=delimiter)
        next(reader, None)

        out: dict[date, float] = {}
        for row in reader:
            if len(row) < 5:
                continue
            try:
                d = datetime.strptime(row[0].strip(), "%Y-%m-%d").date()
            except ValueError:
                continue
            close = self._safe_float(row[4], default=None)
            if close is None or close <= 0:
                continue
            out[d] = close
        return out
