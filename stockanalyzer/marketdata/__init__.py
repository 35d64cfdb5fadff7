"""Market data providers, quotas and fallback gateway."""

from .base import FetchResult, IntradayBar, IntradayFetch, Provider, UpdateType
from .gateway import MarketDataGateway, build_providers
from .quota import QuotaTracker

__all__ = [
    "FetchResult",
    "IntradayBar",
    "IntradayFetch",
    "MarketDataGateway",
    "Provider",
    "QuotaTracker",
    "UpdateType",
    "build_providers",
]
