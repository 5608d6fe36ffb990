"""Precious-metal page scrapers: USAGOLD live spot and TwelveData gram gold (TRY).

Markup changes on these pages are expected. Each parser tries ranked
heuristics and returns None when none match; only transport-level problems
surface as provider errors.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime

from bs4 import BeautifulSoup

from pricecheck.errors import UnsupportedAssetError
from pricecheck.marketdata.providers.base import BaseProvider
from pricecheck.utils import utc_today

logger = logging.getLogger(__name__)

_USAGOLD_URLS = {
    "gold": "https://www.usagold.com/live-gold-price-today/",
    "silver": "https://www.usagold.com/live-silver-price-today/",
}

_TWELVEDATA_LIVE_URL = "https://twelvedata.com/markets/796331/commodity/gau-try"
_TWELVEDATA_HISTORY_URL = f"{_TWELVEDATA_LIVE_URL}/historical-data"
_TWELVEDATA_PRICE_SELECTOR = ".d-flex.align-items-center.stats-symbol-price.stats-symbol-price--small1"

_HTML_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"

_LABELLED_PRICE_RE = re.compile(r"(?:\$|)\s*(\d{1,3}(,\d{3})*(\.\d+)?)")
_CURRENT_PRICE_RE = re.compile(r"\$?([\d,]+\.?\d*)")
_SILVER_CEILING = 500.0


def parse_localized_number(text: str) -> float | None:
    """Parse '2.345,67', '2,345.67', '3.1K' or '1,2M' style numbers."""
    if not text:
        return None
    clean = text.strip().upper()
    multiplier = 1.0
    if clean.endswith("K"):
        multiplier, clean = 1_000.0, clean[:-1].strip()
    elif clean.endswith("M"):
        multiplier, clean = 1_000_000.0, clean[:-1].strip()

    clean = re.sub(r"[^\d.,]", "", clean)
    if not clean:
        return None
    if clean.rfind(",") > clean.rfind("."):
        clean = clean.replace(".", "").replace(",", ".", 1)
    else:
        clean = clean.replace(",", "")
    try:
        return float(clean) * multiplier
    except ValueError:
        return None


def extract_metal_price(html: str, metal: str) -> float | None:
    """Ranked heuristics over a USAGOLD live page."""
    soup = BeautifulSoup(html, "html.parser")
    label = f"{metal.capitalize()} Price"

    # 1. "{Metal} Price" text with a number, preferring "Current"/"Live" blocks.
    price_text = ""
    for elem in soup.find_all(["div", "h1", "h2", "h3", "p", "span"]):
        text = elem.get_text(" ", strip=True)
        if label not in text:
            continue
        match = _LABELLED_PRICE_RE.search(text.split(label, 1)[1]) or _LABELLED_PRICE_RE.search(text)
        if not match:
            continue
        if "Current" in text or "Live" in text:
            price_text = match.group(1)
            break
        if not price_text:
            price_text = match.group(1)

    # 2. First <bdi>, unless it is implausible for silver (header ticker showing gold).
    if not price_text:
        bdi = soup.find("bdi")
        if bdi is not None:
            candidate = bdi.get_text(strip=True)
            value = parse_localized_number(candidate)
            if metal == "silver" and value is not None and value > _SILVER_CEILING:
                logger.warning("[usagold] ignoring implausible silver price %.2f from <bdi>", value)
            elif value is not None:
                price_text = candidate

    # 3. Innermost element mentioning "Current Price".
    if not price_text:
        for node in soup.find_all(string=re.compile("Current Price")):
            parent_text = node.parent.get_text(" ", strip=True) if node.parent else str(node)
            match = _CURRENT_PRICE_RE.search(parent_text.split("Current Price", 1)[1])
            if match and re.search(r"\d", match.group(1)):
                price_text = match.group(1)
                break

    if not price_text:
        return None
    digits = re.sub(r"[^\d.]", "", price_text)
    try:
        return float(digits)
    except ValueError:
        return None


def extract_twelvedata_live(html: str) -> float | None:
    soup = BeautifulSoup(html, "html.parser")
    elem = soup.select_one(_TWELVEDATA_PRICE_SELECTOR)
    if elem is None:
        return None
    return parse_localized_number(elem.get_text(strip=True))


def extract_twelvedata_history(html: str) -> dict[date, float]:
    """Rows of the historical table: date in column 0 ('Dec 13, 2025'), close in column 4."""
    soup = BeautifulSoup(html, "html.parser")
    out: dict[date, float] = {}
    for tr in soup.select("table tbody tr"):
        tds = tr.find_all("td")
        if len(tds) < 5:
            continue
        raw_date = tds[0].get_text(strip=True)
        parsed = None
        for fmt in ("%b %d, %Y", "%B %d, %Y", "%Y-%m-%d"):
            try:
                parsed = datetime.strptime(raw_date, fmt).date()
                break
            except ValueError:
                continue
        if parsed is None:
            continue
        close = parse_localized_number(tds[4].get_text(strip=True))
        if close is not None and close > 0:
            out[parsed] = close
    return out


class UsaGoldProvider(BaseProvider):
    """Live gold and silver spot (USD). Serves today only."""

    name = "usagold"

    async def price_at(self, symbol: str, day: date) -> float | None:
        metal = symbol.lower() if symbol else ""
        if metal not in _USAGOLD_URLS:
            raise UnsupportedAssetError(self.name, symbol)
        if day != utc_today():
            return None

        async def _fetch() -> float | None:
            resp = await self.get(
                _USAGOLD_URLS[metal],
                headers={"Accept": _HTML_ACCEPT, "Accept-Language": "en-US,en;q=0.5"},
            )
            return extract_metal_price(resp.text, metal)

        price = await self.call(_fetch)
        if price is None:
            logger.warning("[usagold] could not find %s price on page", metal)
        else:
            logger.info("[usagold] live %s price: %.2f", metal, price)
        return price


class TwelveDataProvider(BaseProvider):
    """Gram gold priced in TRY (XAUTRYG): live quote and daily history table."""

    name = "twelvedata"
    supports_range = True

    async def price_at(self, symbol: str, day: date) -> float | None:
        if day == utc_today():
            async def _live() -> float | None:
                resp = await self.get(_TWELVEDATA_LIVE_URL, headers={"Accept": "text/html"})
                return extract_twelvedata_live(resp.text)

            price = await self.call(_live)
            if price is not None:
                return price
            logger.warning("[twelvedata] live price element not found, trying history table")
        prices = await self.price_range(symbol, day, day)
        return prices.get(day)

    async def price_range(self, symbol: str, start: date, end: date) -> dict[date, float]:
        async def _history() -> dict[date, float]:
            resp = await self.get(
                _TWELVEDATA_HISTORY_URL,
                params={
                    "start_date": start.isoformat(),
                    "end_date": end.isoformat(),
                    "interval": "1day",
                },
                headers={"Accept": "text/html"},
            )
            return extract_twelvedata_history(resp.text)

        prices = await self.call(_history)
        return {d: p for d, p in prices.items() if start <= d <= end}
