"""Upstream price sources, one adapter per provider."""

from pricecheck.marketdata.providers.base import BaseProvider
from pricecheck.marketdata.providers.coins import CoinGeckoProvider, CoinMarketCapProvider
from pricecheck.marketdata.providers.metals import TwelveDataProvider, UsaGoldProvider
from pricecheck.marketdata.providers.stooq import StooqProvider
from pricecheck.marketdata.providers.yahoo import YahooProvider

__all__ = [
    "BaseProvider",
    "CoinGeckoProvider",
    "CoinMarketCapProvider",
    "StooqProvider",
    "TwelveDataProvider",
    "UsaGoldProvider",
    "YahooProvider",
]
