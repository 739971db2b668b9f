"""Market data subsystem for coinfront.

Public API:
    DualTierCache       - Fresh + never-expiring Stale in-memory cache
    ThrottledFetcher    - Cache-first, rate-bounded access to one resource
    FetcherRegistry     - One ThrottledFetcher per logical resource
    StreamMultiplexer   - One polling loop per resource, fanned out to subscribers
    MarketDataSource    - Abstract interface for upstream providers
    create_market_data_source - Factory that selects CoinGecko or the simulator
    create_market_router - FastAPI router factory for the REST endpoints
    create_stream_router - FastAPI router factory for the SSE endpoint
"""

from .cache import DualTierCache
from .factory import create_market_data_source
from .fetcher import FetcherRegistry, ThrottledFetcher
from .interface import MarketDataSource
from .models import CryptoSnapshot, FetchResult, PriceHistory, PriceQuote
from .multiplexer import StreamMultiplexer
from .routes import create_market_router
from .stream import create_stream_router

__all__ = [
    "CryptoSnapshot",
    "DualTierCache",
    "FetchResult",
    "FetcherRegistry",
    "MarketDataSource",
    "PriceHistory",
    "PriceQuote",
    "StreamMultiplexer",
    "ThrottledFetcher",
    "create_market_data_source",
    "create_market_router",
    "create_stream_router",
]
