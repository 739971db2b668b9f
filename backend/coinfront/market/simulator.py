"""GBM-based offline stand-in for the upstream provider."""

from __future__ import annotations

import logging
import math
import random
import time

import numpy as np

from .errors import UpstreamMalformed, UpstreamRateLimited, UpstreamUnavailable
from .interface import MarketDataSource
from .models import CryptoSnapshot, PriceHistory, PriceQuote
from .seed_prices import CIRCULATING_SUPPLY, COIN_INFO, COIN_PARAMS, DEFAULT_PARAMS, SEED_PRICES

logger = logging.getLogger(__name__)

SECONDS_PER_YEAR = 365 * 24 * 3600
MS_PER_DAY = 24 * 3600 * 1000


class GBMSimulator:
    """Geometric Brownian Motion random walk for crypto prices.

    Math:
        S(t+dt) = S(t) * exp((mu - sigma^2/2) * dt + sigma * sqrt(dt) * Z)

    Crypto trades around the clock, so dt is elapsed wall time as a fraction
    of a calendar year. The 24h change is measured against the seed price,
    which stands in for the price a day ago.
    """

    def __init__(self, coins: list[str], rng: np.random.Generator | None = None) -> None:
        self._rng = rng or np.random.default_rng()
        self._prices: dict[str, float] = {}
        self._opens: dict[str, float] = {}
        for coin in coins:
            self.add_coin(coin)

    def add_coin(self, coin: str) -> None:
        if coin in self._prices:
            return
        seed = SEED_PRICES.get(coin, random.uniform(1.0, 100.0))
        self._prices[coin] = seed
        self._opens[coin] = seed

    def step(self, dt: float) -> dict[str, float]:
        """Advance every coin by `dt` years. Returns {coin: new_price}."""
        coins = list(self._prices)
        if not coins or dt <= 0:
            return dict(self._prices)

        z = self._rng.standard_normal(len(coins))
        for i, coin in enumerate(coins):
            params = COIN_PARAMS.get(coin, DEFAULT_PARAMS)
            mu, sigma = params["mu"], params["sigma"]
            drift = (mu - 0.5 * sigma**2) * dt
            diffusion = sigma * math.sqrt(dt) * z[i]
            self._prices[coin] *= math.exp(drift + diffusion)
        return dict(self._prices)

    @property
    def coins(self) -> list[str]:
        return list(self._prices)

    def price(self, coin: str) -> float:
        return self._prices[coin]

    def change_24h(self, coin: str) -> float:
        """Percent change versus the day-ago reference price."""
        opened = self._opens[coin]
        return (self._prices[coin] - opened) / opened * 100

    def history(self, coin: str, days: int, end_ms: int) -> list[tuple[int, float]]:
        """Daily path of `days` + 1 points ending at the current price."""
        params = COIN_PARAMS.get(coin, DEFAULT_PARAMS)
        mu, sigma = params["mu"], params["sigma"]
        dt = 1 / 365
        steps = (mu - 0.5 * sigma**2) * dt + sigma * math.sqrt(dt) * self._rng.standard_normal(days)
        # Walk backwards from the current price so the series ends where we are now
        log_path = np.concatenate(([0.0], np.cumsum(steps[::-1])))[::-1]
        path = self.price(coin) * np.exp(-log_path)
        return [(end_ms - (days - i) * MS_PER_DAY, float(p)) for i, p in enumerate(path)]


class SimulatorDataSource(MarketDataSource):
    """MarketDataSource backed by the GBM simulator.

    Prices advance by the wall time elapsed since the previous call. A
    non-zero `failure_rate` makes calls fail at random (UpstreamUnavailable,
    or UpstreamRateLimited for a share `rate_limit_share` of failures) so
    the stale-fallback and streaming warning paths can be exercised offline.
    """

    def __init__(
        self,
        coins: list[str] | None = None,
        failure_rate: float = 0.0,
        rate_limit_share: float = 0.5,
        seed: int | None = None,
    ) -> None:
        self._sim = GBMSimulator(coins or list(SEED_PRICES), rng=np.random.default_rng(seed))
        self._random = random.Random(seed)
        self._failure_rate = failure_rate
        self._rate_limit_share = rate_limit_share
        self._last_step = time.monotonic()
        logger.info("Simulator data source ready (failure rate %.0f%%)", failure_rate * 100)

    async def fetch_price(self, coin_id: str) -> PriceQuote:
        self._maybe_fail()
        self._check_known(coin_id)
        self._advance()
        return PriceQuote(
            price=round(self._sim.price(coin_id), 2),
            change24h=round(self._sim.change_24h(coin_id), 4),
        )

    async def fetch_markets(self) -> list[CryptoSnapshot]:
        self._maybe_fail()
        prices = self._advance()
        ranked = sorted(
            prices,
            key=lambda c: prices[c] * CIRCULATING_SUPPLY.get(c, 0.0),
            reverse=True,
        )
        rows = []
        for rank, coin in enumerate(ranked, start=1):
            symbol, name = COIN_INFO.get(coin, (coin[:4], coin.title()))
            price = round(prices[coin], 8)
            supply = CIRCULATING_SUPPLY.get(coin)
            rows.append(
                CryptoSnapshot(
                    id=coin,
                    symbol=symbol,
                    name=name,
                    current_price=price,
                    market_cap=round(price * supply, 2) if supply else None,
                    market_cap_rank=rank,
                    price_change_percentage_24h=round(self._sim.change_24h(coin), 4),
                    circulating_supply=supply,
                )
            )
        return rows

    async def fetch_history(self, coin_id: str, days: int = 30) -> PriceHistory:
        self._maybe_fail()
        self._check_known(coin_id)
        self._advance()
        end_ms = int(time.time() * 1000)
        return PriceHistory(prices=tuple(self._sim.history(coin_id, days, end_ms)))

    # --- Internal ---

    def _advance(self) -> dict[str, float]:
        now = time.monotonic()
        dt = (now - self._last_step) / SECONDS_PER_YEAR
        self._last_step = now
        return self._sim.step(dt)

    def _check_known(self, coin_id: str) -> None:
        # CoinGecko answers an unknown id with an empty object
        if coin_id not in self._sim.coins:
            raise UpstreamMalformed(f"Unknown coin id: {coin_id!r}")

    def _maybe_fail(self) -> None:
        if self._failure_rate <= 0 or self._random.random() >= self._failure_rate:
            return
        if self._random.random() < self._rate_limit_share:
            raise UpstreamRateLimited("Simulated upstream rate limit (HTTP 429)")
        raise UpstreamUnavailable("Simulated upstream outage")
