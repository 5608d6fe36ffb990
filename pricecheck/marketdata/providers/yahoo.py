"""Yahoo Finance: daily bars via yfinance, free-text symbol search via the search API."""

from __future__ import annotations

import asyncio
import logging
import math
from datetime import date, timedelta
from typing import Any

import yfinance as yf
from yfinance.exceptions import (
    YFException,
    YFPricesMissingError,
    YFRateLimitError,
    YFTzMissingError,
)

from pricecheck.errors import (
    MalformedPayloadError,
    ProviderError,
    SymbolNotFoundError,
    ThrottledError,
)
from pricecheck.marketdata.providers.base import BaseProvider

logger = logging.getLogger(__name__)
logging.getLogger("yfinance").setLevel(logging.CRITICAL)

_SEARCH_URL = "https://query2.finance.yahoo.com/v1/finance/search"


class YahooProvider(BaseProvider):
    """General daily-bar provider for equities, ETFs, indices, forex, futures and crypto pairs."""

    name = "yahoo"
    supports_range = True

    async def price_at(self, symbol: str, day: date) -> float | None:
        prices = await self.price_range(symbol, day, day)
        return prices.get(day)

    async def price_range(self, symbol: str, start: date, end: date) -> dict[date, float]:
        prices = await self.call(lambda: self._fetch_range(symbol, start, end))
        logger.debug("[yahoo] %s %s..%s -> %d bars", symbol, start, end, len(prices))
        return prices

    async def search(self, query: str) -> str | None:
        """Best-match ticker for free text, or None when Yahoo has no match."""

        async def _search() -> str | None:
            resp = await self.get(
                _SEARCH_URL,
                params={"q": query, "quotesCount": 5, "newsCount": 0},
            )
            data = self.json(resp)
            quotes = (data or {}).get("quotes") or []
            for q in quotes:
                sym = (q or {}).get("symbol")
                if sym:
                    return str(sym)
            return None

        return await self.call(_search)

    # ── internals ──────────────────────────────────────────────────────

    async def _fetch_range(self, symbol: str, start: date, end: date) -> dict[date, float]:
        try:
            return await asyncio.to_thread(self._download, symbol, start, end)
        except YFRateLimitError as exc:
            raise ThrottledError(self.name) from exc
        except YFPricesMissingError:
            return {}
        except YFTzMissingError as exc:
            raise SymbolNotFoundError(self.name, symbol) from exc
        except (KeyError, TypeError, ValueError) as exc:
            raise MalformedPayloadError(self.name, f"unreadable history for {symbol}: {exc}") from exc
        except YFException as exc:
            raise ProviderError(self.name, str(exc)) from exc

    def _download(self, symbol: str, start: date, end: date) -> dict[date, float]:
        frame = yf.Ticker(symbol).history(
            start=start.isoformat(),
            end=(end + timedelta(days=1)).isoformat(),  # yfinance end is exclusive
            interval="1d",
            auto_adjust=True,
            raise_errors=True,
            timeout=int(self.timeout),
        )
        if frame is None or frame.empty:
            return {}
        return self._rows_to_prices(frame.iterrows())

    @staticmethod
    def _rows_to_prices(rows: Any) -> dict[date, float]:
        out: dict[date, float] = {}
        for idx, row in rows:
            try:
                day = idx.date()
            except AttributeError:
                continue
            close = row.get("Close")
            if close is None:
                continue
            close = float(close)
            if math.isnan(close) or close <= 0:
                continue
            out[day] = round(close, 6)
        return out
