"""Asset-name normalization and provider symbol resolution."""

from __future__ import annotations

import logging
import re
from typing import Awaitable, Callable

from pricecheck.errors import (
    CircuitOpenError,
    ProviderError,
    SymbolNotFoundError,
)

logger = logging.getLogger(__name__)

# ── Static alias table (keys: lowercase, whitespace removed) ──────────

_INDEX_ALIASES = {
    "sp500": "^GSPC",
    "s&p500": "^GSPC",
    "spx": "^GSPC",
    "nasdaq": "^IXIC",
    "dow": "^DJI",
    "dax": "^GDAXI",
    "ftse": "^FTSE",
    "nikkei": "^N225",
    "bist100": "XU100.IS",
    "xu100": "XU100.IS",
}

_COMMODITY_ALIASES = {
    "gold": "GC=F",
    "silver": "SI=F",
    "crude": "CL=F",
    "oil": "CL=F",
    "wti": "CL=F",
    "brent": "BZ=F",
    "natgas": "NG=F",
    "naturalgas": "NG=F",
    "corn": "ZC=F",
    "coffee": "KC=F",
    "xau": "GC=F",
    "xauusd": "GC=F",
    "xag": "SI=F",
    "xagusd": "SI=F",
    "xpt": "PL=F",
    "xpd": "PA=F",
    "spy": "SPY",
    "xautryg": "GAUTRYG",
    "gautryg": "GAUTRYG",
}

_FOREX_ALIASES = {
    "eurusd": "EURUSD=X",
    "usdjpy": "USDJPY=X",
    "gbpusd": "GBPUSD=X",
    "usdtry": "USDTRY=X",
}

_BOND_ALIASES = {
    "us10y": "^TNX",
    "10yearbond": "^TNX",
    "us30y": "^TYX",
    "30yearbond": "^TYX",
}

CRYPTO_TICKERS = frozenset(
    {"BTC", "ETH", "SOL", "XRP", "ADA", "DOGE", "DOT", "AVAX", "MATIC", "LINK", "UNI", "ATOM"}
)

_CRYPTO_ALIASES = {t.lower(): f"{t}-USD" for t in CRYPTO_TICKERS}

ALIASES: dict[str, str] = {
    **_INDEX_ALIASES,
    **_COMMODITY_ALIASES,
    **_FOREX_ALIASES,
    **_BOND_ALIASES,
    **_CRYPTO_ALIASES,
}

_ASSET_RENAMES = {
    "XAU": "GOLD",
    "XAUUSD": "GOLD",
    "GOLDSPOT": "GOLD",
    "XAG": "SILVER",
    "XAGUSD": "SILVER",
    "SILVERSPOT": "SILVER",
    "BITCOIN": "BTC",
    "ETHEREUM": "ETH",
}

GOLD_NAMES = frozenset({"GOLD", "XAU", "XAUUSD", "GC=F"})
SILVER_NAMES = frozenset({"SILVER", "XAG", "XAGUSD", "SI=F"})
GRAM_GOLD_NAMES = frozenset({"XAUTRYG", "GAUTRYG"})

_SUFFIX_CURRENCY = {
    ".IS": "TRY",
    ".NS": "INR",
    ".BO": "INR",
    ".L": "GBP",
    ".T": "JPY",
}

_INDEX_CURRENCY = {
    "^GDAXI": "EUR",
    "^FTSE": "GBP",
    "^N225": "JPY",
}

_WS_RE = re.compile(r"\s+")


def alias_key(name: str) -> str:
    return _WS_RE.sub("", (name or "").lower())


def normalize_asset_name(name: str) -> str:
    """Canonical storage name: upper case, no slashes/spaces, metal and coin renames."""
    cleaned = _WS_RE.sub("", (name or "").upper()).replace("/", "")
    return _ASSET_RENAMES.get(cleaned, cleaned)


def is_crypto(asset: str, asset_type: str | None = None) -> bool:
    if asset_type and asset_type.lower() == "crypto":
        return True
    name = normalize_asset_name(asset)
    if name.endswith("-USD"):
        name = name[:-4]
    return name in CRYPTO_TICKERS


def metal_of(asset: str) -> str | None:
    """'gold' / 'silver' when the asset names a spot precious metal, else None."""
    upper = _WS_RE.sub("", (asset or "").upper())
    if upper in GOLD_NAMES or normalize_asset_name(asset) == "GOLD":
        return "gold"
    if upper in SILVER_NAMES or normalize_asset_name(asset) == "SILVER":
        return "silver"
    return None


def is_gram_gold(asset: str) -> bool:
    return normalize_asset_name(asset) in GRAM_GOLD_NAMES


def detect_currency(symbol: str, asset_type: str | None = None) -> str:
    """Quote currency implied by a provider symbol."""
    upper = (symbol or "").upper()
    kind = (asset_type or "").lower()
    if kind == "crypto" or upper.endswith("-USD"):
        return "USD"
    if upper in GRAM_GOLD_NAMES:
        return "TRY"
    if kind == "forex" or upper.endswith("=X"):
        return upper[:3] if len(upper) >= 6 else "USD"
    for suffix, ccy in _SUFFIX_CURRENCY.items():
        if upper.endswith(suffix):
            return ccy
    if upper in _INDEX_CURRENCY:
        return _INDEX_CURRENCY[upper]
    return "USD"


class SymbolResolver:
    """Map free-form asset names to daily-bar provider tickers.

    Static aliases win; crypto tickers get the ``-USD`` suffix; anything else
    goes to the injected ``search`` callable. Search hits are memoized for the
    lifetime of the resolver.
    """

    def __init__(self, search: Callable[[str], Awaitable[str | None]] | None = None) -> None:
        self._search = search
        self._memo: dict[str, str] = {}

    @staticmethod
    def lookup_alias(name: str, asset_type: str | None = None) -> str | None:
        key = alias_key(name)
        if not key:
            return None
        canonical = normalize_asset_name(name)
        for candidate in (key, canonical.lower()):
            if candidate in ALIASES:
                return ALIASES[candidate]
        kind = (asset_type or "").lower()
        if kind == "crypto" and "-" not in canonical and "USD" not in canonical:
            return f"{canonical}-USD"
        if kind == "forex" and len(key) == 6 and key.isalpha():
            return f"{key.upper()}=X"
        return None

    async def resolve(self, name: str, asset_type: str | None = None) -> str:
        """Return the provider ticker for ``name``.

        Raises ``SymbolNotFoundError`` when the search endpoint has no match.
        Transient search failures fall back to the raw upper-cased name.
        """
        alias = self.lookup_alias(name, asset_type)
        if alias:
            return alias

        key = alias_key(name)
        if key in self._memo:
            return self._memo[key]

        raw = (name or "").strip().upper()
        if self._search is None:
            return raw

        try:
            found = await self._search(name.strip())
        except (ProviderError, CircuitOpenError) as exc:
            logger.debug("[symbols] search unavailable for %s: %s", name, exc)
            return raw

        if not found:
            raise SymbolNotFoundError("search", name)

        logger.info("[symbols] resolved %s -> %s via search", name, found)
        self._memo[key] = found
        return found
