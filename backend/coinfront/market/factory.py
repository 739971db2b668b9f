"""Factory for creating market data sources."""

from __future__ import annotations

import logging

from ..config import Settings
from .interface import MarketDataSource

logger = logging.getLogger(__name__)


def create_market_data_source(settings: Settings) -> MarketDataSource:
    """Create the upstream data source the settings ask for.

    - COINFRONT_DATA_SOURCE=simulator → SimulatorDataSource (offline GBM)
    - Otherwise → CoinGeckoDataSource; COINGECKO_API_KEY is optional and
      switches to the Pro endpoint when set

    Raises ValueError for an unknown source name.
    """
    if settings.data_source == "simulator":
        from .simulator import SimulatorDataSource

        logger.info("Market data source: GBM Simulator")
        return SimulatorDataSource(failure_rate=settings.simulator_failure_rate)

    if settings.data_source == "coingecko":
        from .coingecko_client import CoinGeckoDataSource

        logger.info("Market data source: CoinGecko API (real data)")
        return CoinGeckoDataSource(
            api_key=settings.coingecko_api_key,
            timeout=settings.upstream_timeout,
        )

    raise ValueError(f"Unknown market data source: {settings.data_source!r}")
