from __future__ import annotations

import pytest

from pricecheck.errors import ProviderError, SymbolNotFoundError
from pricecheck.marketdata.symbols import (
    SymbolResolver,
    detect_currency,
    is_crypto,
    is_gram_gold,
    metal_of,
    normalize_asset_name,
)


@pytest.mark.parametrize("raw", ["S&P 500", "s&p500", " S & P 500 ", "SP500", "sp 500"])
def test_alias_lookup_ignores_case_and_whitespace(raw: str) -> None:
    assert SymbolResolver.lookup_alias(raw) == "^GSPC"


@pytest.mark.parametrize(
    "raw, asset_type, expected",
    [
        ("Gold", None, "GC=F"),
        ("XAU/USD", None, "GC=F"),
        ("bitcoin", None, "BTC-USD"),
        ("eth", "crypto", "ETH-USD"),
        ("PEPE", "crypto", "PEPE-USD"),
        ("EUR/USD", "forex", "EURUSD=X"),
        ("usdchf", "forex", "USDCHF=X"),
        ("BIST 100", None, "XU100.IS"),
        ("US10Y", "bond", "^TNX"),
    ],
)
def test_alias_table_covers_asset_classes(raw: str, asset_type: str | None, expected: str) -> None:
    assert SymbolResolver.lookup_alias(raw, asset_type) == expected


def test_unknown_name_has_no_alias() -> None:
    assert SymbolResolver.lookup_alias("Apple Inc") is None
    assert SymbolResolver.lookup_alias("   ") is None


@pytest.mark.asyncio
async def test_search_hits_are_memoized() -> None:
    calls: list[str] = []

    async def _search(query: str) -> str | None:
        calls.append(query)
        return "AAPL"

    resolver = SymbolResolver(search=_search)
    assert await resolver.resolve("Apple Inc") == "AAPL"
    assert await resolver.resolve("  apple inc ") == "AAPL"
    assert calls == ["Apple Inc"]


@pytest.mark.asyncio
async def test_aliases_never_reach_search() -> None:
    async def _search(query: str) -> str | None:  # pragma: no cover - must not run
        raise AssertionError("search called for an aliased name")

    resolver = SymbolResolver(search=_search)
    assert await resolver.resolve("nasdaq") == "^IXIC"


@pytest.mark.asyncio
async def test_search_miss_is_symbol_not_found() -> None:
    async def _search(query: str) -> str | None:
        return None

    with pytest.raises(SymbolNotFoundError):
        await SymbolResolver(search=_search).resolve("Nonexistent Widgets")


@pytest.mark.asyncio
async def test_search_outage_falls_back_to_raw_name() -> None:
    async def _search(query: str) -> str | None:
        raise ProviderError("yahoo", "HTTP 503")

    assert await SymbolResolver(search=_search).resolve(" msft ") == "MSFT"


@pytest.mark.asyncio
async def test_without_search_raw_name_is_used() -> None:
    assert await SymbolResolver().resolve("thyao.is") == "THYAO.IS"


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("xau/usd", "GOLD"),
        ("Gold Spot", "GOLD"),
        ("xag", "SILVER"),
        ("Bitcoin", "BTC"),
        (" aapl ", "AAPL"),
        ("EUR/USD", "EURUSD"),
    ],
)
def test_normalize_asset_name(raw: str, expected: str) -> None:
    assert normalize_asset_name(raw) == expected


def test_asset_class_predicates() -> None:
    assert is_crypto("btc-usd")
    assert is_crypto("Ethereum")
    assert is_crypto("NEWCOIN", "Crypto")
    assert not is_crypto("AAPL")

    assert metal_of("xauusd") == "gold"
    assert metal_of("Silver") == "silver"
    assert metal_of("AAPL") is None

    assert is_gram_gold("xautryg")
    assert not is_gram_gold("GOLD")


@pytest.mark.parametrize(
    "symbol, asset_type, expected",
    [
        ("THYAO.IS", None, "TRY"),
        ("EURUSD=X", None, "EUR"),
        ("BTC-USD", None, "USD"),
        ("XAUTRYG", None, "TRY"),
        ("^GDAXI", "index", "EUR"),
        ("VOD.L", None, "GBP"),
        ("AAPL", "stock", "USD"),
    ],
)
def test_detect_currency(symbol: str, asset_type: str | None, expected: str) -> None:
    assert detect_currency(symbol, asset_type) == expected
