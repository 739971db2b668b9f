"""Abstract interface for upstream market data providers."""

from __future__ import annotations

from abc import ABC, abstractmethod

from .models import CryptoSnapshot, PriceHistory, PriceQuote


class MarketDataSource(ABC):
    """Contract for upstream market data providers.

    Every call goes straight to the provider; caching and throttling live in
    ThrottledFetcher. Implementations raise the UpstreamError subclasses from
    ``errors`` and nothing else.

    Lifecycle:
        source = create_market_data_source(settings)
        quote = await source.fetch_price("bitcoin")
        # ... app runs ...
        await source.aclose()
    """

    @abstractmethod
    async def fetch_price(self, coin_id: str) -> PriceQuote:
        """Current USD price and 24h change for one coin."""

    @abstractmethod
    async def fetch_markets(self) -> list[CryptoSnapshot]:
        """Top coins by market cap."""

    @abstractmethod
    async def fetch_history(self, coin_id: str, days: int = 30) -> PriceHistory:
        """Daily-ish USD price series for the last `days` days."""

    async def aclose(self) -> None:
        """Release network resources. Safe to call multiple times."""
