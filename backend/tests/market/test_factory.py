"""Tests for market data source factory."""

import pytest

from coinfront.config import Settings
from coinfront.market.coingecko_client import PRO_BASE_URL, PUBLIC_BASE_URL, CoinGeckoDataSource
from coinfront.market.factory import create_market_data_source
from coinfront.market.simulator import SimulatorDataSource


@pytest.mark.asyncio
class TestFactory:
    """Tests for create_market_data_source factory."""

    async def test_defaults_to_coingecko(self):
        """Test that the public CoinGecko API is used when nothing is configured."""
        source = create_market_data_source(Settings())
        assert isinstance(source, CoinGeckoDataSource)
        assert source.base_url == PUBLIC_BASE_URL
        await source.aclose()

    async def test_api_key_selects_pro_endpoint(self):
        source = create_market_data_source(Settings(coingecko_api_key="test-key"))
        assert isinstance(source, CoinGeckoDataSource)
        assert source.base_url == PRO_BASE_URL
        await source.aclose()

    async def test_creates_simulator(self):
        """Test that the simulator is created when asked for by name."""
        source = create_market_data_source(Settings(data_source="simulator"))
        assert isinstance(source, SimulatorDataSource)

    async def test_unknown_source_raises(self):
        with pytest.raises(ValueError, match="Unknown market data source"):
            create_market_data_source(Settings(data_source="binance"))
