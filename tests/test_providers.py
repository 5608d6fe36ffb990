from __future__ import annotations

import types
from datetime import date, datetime

import httpx
import pytest
from yfinance.exceptions import YFRateLimitError, YFTzMissingError

from pricecheck.errors import (
    ConfigurationError,
    MalformedPayloadError,
    ProviderError,
    SymbolNotFoundError,
    UnsupportedAssetError,
)
from pricecheck.marketdata.providers import (
    CoinGeckoProvider,
    CoinMarketCapProvider,
    StooqProvider,
    TwelveDataProvider,
    UsaGoldProvider,
    YahooProvider,
)
from pricecheck.marketdata.providers.coins import base_ticker
from pricecheck.marketdata.providers.metals import (
    extract_metal_price,
    extract_twelvedata_history,
    extract_twelvedata_live,
    parse_localized_number,
)
from pricecheck.marketdata.providers.stooq import to_stooq_symbol
from pricecheck.utils import utc_today

DAY = date(2025, 3, 14)


# ── Stooq ─────────────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "symbol, expected",
    [
        ("AAPL", "aapl.us"),
        ("^GSPC", "^gspc"),
        ("EURUSD=X", "eurusd"),
        ("GC=F", "gc.f"),
        ("XU100.IS", "^xutry"),
        ("BTC-USD", None),
        ("THYAO.IS", None),
        ("", None),
    ],
)
def test_stooq_symbol_mapping(symbol: str, expected: str | None) -> None:
    assert to_stooq_symbol(symbol) == expected


@pytest.mark.asyncio
async def test_stooq_uses_nearest_prior_close(make_provider) -> None:  # noqa: ANN001
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        body = (
            "Date,Open,High,Low,Close,Volume\n"
            "2025-03-11,220.0,221.0,218.0,220.84,100\n"
            "2025-03-12,219.0,222.0,217.0,216.98,100\n"
            "2025-03-13,216.0,217.0,208.0,209.68,100\n"
        )
        return httpx.Response(200, text=body)

    provider = make_provider(StooqProvider, handler)
    assert await provider.price_at("AAPL", DAY) == 209.68

    assert len(seen) == 1
    params = seen[0].url.params
    assert params["s"] == "aapl.us"
    assert params["d1"] == "20250311"
    assert params["d2"] == "20250314"


@pytest.mark.asyncio
async def test_stooq_semicolon_csv_and_no_data(make_provider) -> None:  # noqa: ANN001
    bodies = iter([
        "Data;Otwarcie;Najwyzszy;Najnizszy;Zamkniecie\n2025-03-14;1;1;1;5612.3\n",
        "No data",
    ])

    provider = make_provider(StooqProvider, lambda request: httpx.Response(200, text=next(bodies)))
    assert await provider.price_at("^GSPC", DAY) == 5612.3
    assert await provider.price_at("^GSPC", DAY) is None


@pytest.mark.asyncio
async def test_stooq_rejects_unmappable_symbols_without_a_request(make_provider) -> None:  # noqa: ANN001
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover - must not run
        raise AssertionError("request sent")

    provider = make_provider(StooqProvider, handler)
    with pytest.raises(UnsupportedAssetError):
        await provider.price_at("BTC-USD", DAY)


# ── CoinGecko / CoinMarketCap ─────────────────────────────────────────

def test_base_ticker() -> None:
    assert base_ticker("btc-usd") == "BTC"
    assert base_ticker("ETHUSDT") == "ETH"
    assert base_ticker("SOL") == "SOL"


@pytest.mark.asyncio
async def test_coingecko_history_by_date(make_provider) -> None:  # noqa: ANN001
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/v3/coins/bitcoin/history"
        assert request.url.params["date"] == "14-03-2025"
        assert request.headers["x-cg-demo-api-key"] == "demo-key"
        return httpx.Response(200, json={"market_data": {"current_price": {"usd": 83_400.12}}})

    provider = make_provider(CoinGeckoProvider, handler, api_key="demo-key")
    assert await provider.price_at("BTC-USD", DAY) == 83_400.12


@pytest.mark.asyncio
async def test_coingecko_without_market_data_is_a_miss(make_provider) -> None:  # noqa: ANN001
    provider = make_provider(CoinGeckoProvider, lambda request: httpx.Response(200, json={"id": "bitcoin"}))
    assert await provider.price_at("BTC", DAY) is None


@pytest.mark.asyncio
async def test_coingecko_unmapped_symbol_is_unsupported(make_provider) -> None:  # noqa: ANN001
    provider = make_provider(CoinGeckoProvider, lambda request: httpx.Response(500))
    with pytest.raises(UnsupportedAssetError):
        await provider.price_at("NEWCOIN", DAY)
    assert provider.get_stats()["calls"] == 0


@pytest.mark.asyncio
async def test_404_is_symbol_not_found_and_keeps_breaker_closed(make_provider) -> None:  # noqa: ANN001
    provider = make_provider(CoinGeckoProvider, lambda request: httpx.Response(404), failure_threshold=1)
    with pytest.raises(SymbolNotFoundError):
        await provider.price_at("BTC", DAY)
    assert provider.breaker.consecutive_failures == 0


@pytest.mark.asyncio
async def test_throttled_request_is_retried_by_the_limiter(make_provider) -> None:  # noqa: ANN001
    responses = iter([
        httpx.Response(429, headers={"Retry-After": "0"}),
        httpx.Response(200, json={"market_data": {"current_price": {"usd": 1900.5}}}),
    ])
    provider = make_provider(CoinGeckoProvider, lambda request: next(responses))

    assert await provider.price_at("ETH", DAY) == 1900.5
    assert provider.get_stats()["throttled"] == 1
    assert provider.breaker.consecutive_failures == 0


@pytest.mark.asyncio
async def test_server_errors_are_retried_then_counted_once(make_provider) -> None:  # noqa: ANN001
    hits = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal hits
        hits += 1
        return httpx.Response(503)

    provider = make_provider(CoinGeckoProvider, handler, max_retries=2)
    with pytest.raises(ProviderError):
        await provider.price_at("BTC", DAY)
    assert hits == 3
    assert provider.breaker.consecutive_failures == 1


@pytest.mark.asyncio
async def test_transport_errors_become_provider_errors(make_provider) -> None:  # noqa: ANN001
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    provider = make_provider(CoinGeckoProvider, handler)
    with pytest.raises(ProviderError):
        await provider.price_at("BTC", DAY)


@pytest.mark.asyncio
async def test_coinmarketcap_requires_api_key_for_today(make_provider) -> None:  # noqa: ANN001
    provider = make_provider(CoinMarketCapProvider, lambda request: httpx.Response(200, json={}))
    assert await provider.price_at("BTC", DAY) is None
    with pytest.raises(ConfigurationError):
        await provider.price_at("BTC", utc_today())


@pytest.mark.asyncio
async def test_coinmarketcap_spot_quote(make_provider) -> None:  # noqa: ANN001
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["X-CMC_PRO_API_KEY"] == "cmc-key"
        assert request.url.params["symbol"] == "SOL"
        return httpx.Response(200, json={"data": {"SOL": {"quote": {"USD": {"price": 171.25}}}}})

    provider = make_provider(CoinMarketCapProvider, handler, api_key="cmc-key")
    assert await provider.price_at("SOL-USD", utc_today()) == 171.25


@pytest.mark.asyncio
async def test_coinmarketcap_unknown_ticker_and_bad_payload(make_provider) -> None:  # noqa: ANN001
    responses = iter([
        httpx.Response(200, json={"data": {}}),
        httpx.Response(200, json={"data": {"BTC": {"quote": {}}}}),
    ])
    provider = make_provider(CoinMarketCapProvider, lambda request: next(responses), api_key="k")

    with pytest.raises(SymbolNotFoundError):
        await provider.price_at("FOO", utc_today())
    with pytest.raises(MalformedPayloadError):
        await provider.price_at("BTC", utc_today())


# ── Precious metals ───────────────────────────────────────────────────

@pytest.mark.parametrize(
    "text, expected",
    [
        ("2.345,67", 2345.67),
        ("2,345.67", 2345.67),
        ("$3,012.50", 3012.50),
        ("3.1K", 3100.0),
        ("1,2M", 1_200_000.0),
        ("", None),
        ("n/a", None),
    ],
)
def test_parse_localized_number(text: str, expected: float | None) -> None:
    assert parse_localized_number(text) == (pytest.approx(expected) if expected is not None else None)


def test_metal_price_prefers_current_price_block() -> None:
    html = """
    <html><body>
      <div><h3>Gold Price History</h3><p>Gold Price 1,980.00 last year</p></div>
      <div class="live"><span>Current Gold Price $2,345.67 per ounce</span></div>
    </body></html>
    """
    assert extract_metal_price(html, "gold") == 2345.67


def test_metal_price_ignores_implausible_silver_bdi() -> None:
    assert extract_metal_price("<p><bdi>3,100.00</bdi></p>", "silver") is None
    assert extract_metal_price("<p><bdi>31.25</bdi></p>", "silver") == 31.25


def test_metal_price_current_price_fallback() -> None:
    html = "<table><tr><td>Current Price</td></tr></table><div><b>Current Price $33.10</b></div>"
    assert extract_metal_price(html, "silver") == 33.10


def test_metal_price_missing_returns_none() -> None:
    assert extract_metal_price("<html><body>Maintenance</body></html>", "gold") is None


@pytest.mark.asyncio
async def test_usagold_serves_today_only(make_provider) -> None:  # noqa: ANN001
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/live-silver-price-today/"
        return httpx.Response(200, text="<span>Current Silver Price $33.41</span>")

    provider = make_provider(UsaGoldProvider, handler)
    assert await provider.price_at("silver", utc_today()) == 33.41
    assert await provider.price_at("silver", DAY) is None
    with pytest.raises(UnsupportedAssetError):
        await provider.price_at("platinum", utc_today())


_TWELVEDATA_TABLE = """
<table><thead><tr><th>Date</th><th>Open</th><th>High</th><th>Low</th><th>Close</th></tr></thead>
<tbody>
  <tr><td>Mar 14, 2025</td><td>3,500.10</td><td>3,560.00</td><td>3,490.00</td><td>3,551.42</td></tr>
  <tr><td>Mar 13, 2025</td><td>3,480.00</td><td>3,510.00</td><td>3,470.00</td><td>3,500.05</td></tr>
  <tr><td>bad row</td><td>1</td></tr>
</tbody></table>
"""


def test_twelvedata_history_table() -> None:
    assert extract_twelvedata_history(_TWELVEDATA_TABLE) == {
        date(2025, 3, 14): 3551.42,
        date(2025, 3, 13): 3500.05,
    }


def test_twelvedata_live_selector() -> None:
    html = (
        '<div class="d-flex align-items-center stats-symbol-price stats-symbol-price--small1">'
        "3.612,45</div>"
    )
    assert extract_twelvedata_live(html) == pytest.approx(3612.45)
    assert extract_twelvedata_live("<div>nothing</div>") is None


@pytest.mark.asyncio
async def test_twelvedata_history_request(make_provider) -> None:  # noqa: ANN001
    starts: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path.endswith("/historical-data")
        assert request.url.params["interval"] == "1day"
        starts.append(request.url.params["start_date"])
        return httpx.Response(200, text=_TWELVEDATA_TABLE)

    provider = make_provider(TwelveDataProvider, handler)
    prices = await provider.price_range("XAUTRYG", date(2025, 3, 13), DAY)
    assert prices[DAY] == 3551.42
    assert await provider.price_at("XAUTRYG", DAY) == 3551.42
    assert starts == ["2025-03-13", "2025-03-14"]


# ── Yahoo ─────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_yahoo_range_goes_through_the_guarded_path(make_provider) -> None:  # noqa: ANN001
    provider = make_provider(YahooProvider)

    def _download(self, symbol, start, end):  # noqa: ANN001
        assert (symbol, start, end) == ("AAPL", date(2025, 3, 13), DAY)
        return {date(2025, 3, 13): 209.68, DAY: 213.49}

    provider._download = types.MethodType(_download, provider)

    assert await provider.price_range("AAPL", date(2025, 3, 13), DAY) == {
        date(2025, 3, 13): 209.68,
        DAY: 213.49,
    }
    assert provider.get_stats()["calls"] == 1


@pytest.mark.asyncio
async def test_yahoo_rate_limit_is_backed_off(make_provider) -> None:  # noqa: ANN001
    provider = make_provider(YahooProvider)
    attempts = 0

    def _download(self, symbol, start, end):  # noqa: ANN001
        nonlocal attempts
        attempts += 1
        if attempts == 1:
            raise YFRateLimitError()
        return {DAY: 213.49}

    provider._download = types.MethodType(_download, provider)
    assert await provider.price_at("AAPL", DAY) == 213.49
    assert attempts == 2


@pytest.mark.asyncio
async def test_yahoo_unknown_ticker_is_symbol_not_found(make_provider) -> None:  # noqa: ANN001
    provider = make_provider(YahooProvider)

    def _download(self, symbol, start, end):  # noqa: ANN001
        raise YFTzMissingError(symbol)

    provider._download = types.MethodType(_download, provider)
    with pytest.raises(SymbolNotFoundError):
        await provider.price_range("ZZZZQ", DAY, DAY)


def test_yahoo_rows_skip_nan_and_non_positive() -> None:
    rows = [
        (datetime(2025, 3, 12), {"Close": 216.98}),
        (datetime(2025, 3, 13), {"Close": float("nan")}),
        (datetime(2025, 3, 14), {"Close": 0.0}),
        ("not-a-timestamp", {"Close": 1.0}),
    ]
    assert YahooProvider._rows_to_prices(rows) == {date(2025, 3, 12): 216.98}


@pytest.mark.asyncio
async def test_yahoo_search_returns_first_symbol(make_provider) -> None:  # noqa: ANN001
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["q"] == "turkish airlines"
        return httpx.Response(200, json={"quotes": [{"symbol": "THYAO.IS"}, {"symbol": "TKHVY"}]})

    provider = make_provider(YahooProvider, handler)
    assert await provider.search("turkish airlines") == "THYAO.IS"


@pytest.mark.asyncio
async def test_yahoo_search_without_quotes(make_provider) -> None:  # noqa: ANN001
    provider = make_provider(YahooProvider, lambda request: httpx.Response(200, json={"quotes": []}))
    assert await provider.search("qwertyuiop") is None
