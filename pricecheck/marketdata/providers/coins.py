"""Crypto sources: CoinMarketCap spot quotes and CoinGecko history by date."""

from __future__ import annotations

import logging
from datetime import date

from pricecheck.errors import (
    ConfigurationError,
    MalformedPayloadError,
    SymbolNotFoundError,
    UnsupportedAssetError,
)
from pricecheck.marketdata.providers.base import BaseProvider
from pricecheck.utils import utc_today

logger = logging.getLogger(__name__)

_CMC_QUOTES_URL = "https://pro-api.coinmarketcap.com/v1/cryptocurrency/quotes/latest"
_COINGECKO_HISTORY_URL = "https://api.coingecko.com/api/v3/coins/{coin_id}/history"

COINGECKO_IDS = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "SOL": "solana",
    "XRP": "ripple",
    "ADA": "cardano",
    "DOGE": "dogecoin",
    "DOT": "polkadot",
    "AVAX": "avalanche-2",
    "MATIC": "matic-network",
    "LINK": "chainlink",
    "UNI": "uniswap",
    "ATOM": "cosmos",
    "LTC": "litecoin",
    "BCH": "bitcoin-cash",
    "ALGO": "algorand",
    "XLM": "stellar",
    "NEAR": "near",
    "QNT": "quant-network",
    "FIL": "filecoin",
    "HBAR": "hedera-hashgraph",
}


def base_ticker(symbol: str) -> str:
    s = (symbol or "").strip().upper()
    for suffix in ("-USD", "USDT", "USD"):
        if s.endswith(suffix) and len(s) > len(suffix):
            return s[: -len(suffix)].rstrip("-/")
    return s


class CoinMarketCapProvider(BaseProvider):
    """Live crypto spot price. Serves today only."""

    name = "coinmarketcap"

    def __init__(self, api_key: str = "", **kwargs) -> None:  # noqa: ANN003
        super().__init__(**kwargs)
        self._api_key = (api_key or "").strip()

    async def price_at(self, symbol: str, day: date) -> float | None:
        if day != utc_today():
            return None
        if not self._api_key:
            raise ConfigurationError("COINMARKETCAP_API_KEY is not set")
        ticker = base_ticker(symbol)

        async def _fetch() -> float | None:
            resp = await self.get(
                _CMC_QUOTES_URL,
                params={"symbol": ticker, "convert": "USD"},
                headers={"X-CMC_PRO_API_KEY": self._api_key, "Accept": "application/json"},
            )
            data = self.json(resp)
            entry = ((data or {}).get("data") or {}).get(ticker)
            if isinstance(entry, list):
                entry = entry[0] if entry else None
            if not entry:
                raise SymbolNotFoundError(self.name, ticker)
            try:
                price = entry["quote"]["USD"]["price"]
            except (KeyError, TypeError) as exc:
                raise MalformedPayloadError(self.name, f"no USD quote for {ticker}") from exc
            return self._safe_float(price, default=None)

        return await self.call(_fetch)


class CoinGeckoProvider(BaseProvider):
    """Historical crypto price for one calendar date."""

    name = "coingecko"

    def __init__(self, api_key: str = "", **kwargs) -> None:  # noqa: ANN003
        super().__init__(**kwargs)
        self._api_key = (api_key or "").strip()

    @staticmethod
    def coin_id(symbol: str) -> str | None:
        return COINGECKO_IDS.get(base_ticker(symbol))

    async def price_at(self, symbol: str, day: date) -> float | None:
        coin_id = self.coin_id(symbol)
        if coin_id is None:
            raise UnsupportedAssetError(self.name, symbol)

        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["x-cg-demo-api-key"] = self._api_key

        async def _fetch() -> float | None:
            resp = await self.get(
                _COINGECKO_HISTORY_URL.format(coin_id=coin_id),
                params={"date": day.strftime("%d-%m-%Y"), "localization": "false"},
                headers=headers,
                symbol=symbol,
            )
            data = self.json(resp)
            if not isinstance(data, dict):
                raise MalformedPayloadError(self.name, "unexpected payload shape")
            usd = ((data.get("market_data") or {}).get("current_price") or {}).get("usd")
            return self._safe_float(usd, default=None)

        price = await self.call(_fetch)
        if price is None:
            logger.info("[coingecko] no market data for %s on %s", coin_id, day)
        return price
