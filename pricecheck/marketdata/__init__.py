"""Market data interfaces for pricecheck."""

from .cache import PriceCache
from .circuit import CircuitBreaker, CircuitState
from .factory import build_providers, build_resolver
from .fx import FxConverter
from .ratelimit import RateLimiter
from .resolver import PriceResolver, ProviderRoute
from .symbols import SymbolResolver, normalize_asset_name

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "FxConverter",
    "PriceCache",
    "PriceResolver",
    "ProviderRoute",
    "RateLimiter",
    "SymbolResolver",
    "build_providers",
    "build_resolver",
    "normalize_asset_name",
]
