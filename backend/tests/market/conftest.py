"""Fixtures for market data tests.

Provides a hand-driven clock and an in-memory upstream double that counts
calls and can be told to fail, so no test touches the network or waits on
the wall clock.
"""

import pytest

from coinfront.config import Settings
from coinfront.market.cache import DualTierCache
from coinfront.market.interface import MarketDataSource
from coinfront.market.models import CryptoSnapshot, PriceHistory, PriceQuote
from coinfront.market.timer import ManualScheduler


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StubSource(MarketDataSource):
    """Upstream double. Set `fail_with` to make every call raise it."""

    def __init__(self) -> None:
        self.quote = PriceQuote(price=50000.50, change24h=2.5)
        self.markets = [
            CryptoSnapshot(id="bitcoin", symbol="btc", name="Bitcoin", current_price=50000.50),
            CryptoSnapshot(id="ethereum", symbol="eth", name="Ethereum", current_price=3000.25),
        ]
        self.history = PriceHistory(prices=((1707580800000, 49000.0), (1707667200000, 50000.5)))
        self.fail_with: Exception | None = None
        self.calls: list[tuple[str, str]] = []
        self.closed = False

    def call_count(self, kind: str | None = None) -> int:
        return sum(1 for k, _ in self.calls if kind is None or k == kind)

    def _maybe_fail(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    async def fetch_price(self, coin_id: str) -> PriceQuote:
        self.calls.append(("price", coin_id))
        self._maybe_fail()
        return self.quote

    async def fetch_markets(self) -> list[CryptoSnapshot]:
        self.calls.append(("markets", ""))
        self._maybe_fail()
        return list(self.markets)

    async def fetch_history(self, coin_id: str, days: int = 30) -> PriceHistory:
        self.calls.append(("history", coin_id))
        self._maybe_fail()
        return self.history

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return DualTierCache(clock=clock)


@pytest.fixture
def source():
    return StubSource()


@pytest.fixture
def scheduler():
    return ManualScheduler(start=1000.0)


@pytest.fixture
def settings():
    return Settings(
        cache_ttl=120.0,
        max_requests=3,
        rate_window=60.0,
        stream_interval=10.0,
        heartbeat_interval=30.0,
        upstream_timeout=1.0,
    )
