"""Currency conversion on top of the price resolver."""

from __future__ import annotations

import logging
from datetime import date

from pricecheck.marketdata.resolver import PriceResolver
from pricecheck.utils import as_date, utc_today

logger = logging.getLogger(__name__)


class FxConverter:
    """Daily exchange rates resolved as ``FROMTO`` forex assets (e.g. ``USDTRY``)."""

    def __init__(self, resolver: PriceResolver, *, lookback_days: int = 5) -> None:
        self._resolver = resolver
        self._lookback_days = lookback_days

    async def get_exchange_rate(self, from_ccy: str, to_ccy: str, day: date | str) -> float | None:
        """Units of ``to_ccy`` per one ``from_ccy`` on ``day``.

        Falls back to today's rate when the historical rate is unavailable.
        """
        src = (from_ccy or "").strip().upper()
        dst = (to_ccy or "").strip().upper()
        if not src or not dst or src == dst:
            return 1.0

        pair = f"{src}{dst}"
        target = as_date(day)
        rate = await self._resolver.get_price_with_fallback(
            pair, target, "forex", max_lookback_days=self._lookback_days
        )
        if rate is not None:
            return rate

        today = utc_today()
        if target != today:
            rate = await self._resolver.get_price_with_fallback(
                pair, today, "forex", max_lookback_days=self._lookback_days
            )
            if rate is not None:
                logger.warning("[fx] %s on %s unavailable, approximating with latest rate %s", pair, target, rate)
                return rate

        logger.warning("[fx] no rate for %s on %s", pair, target)
        return None

    async def convert_price(
        self, price: float, from_ccy: str, to_ccy: str, day: date | str
    ) -> float | None:
        rate = await self.get_exchange_rate(from_ccy, to_ccy, day)
        if rate is None:
            return None
        return round(price * rate, 6)
