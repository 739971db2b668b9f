"""Throttled, cache-first access to the upstream provider."""

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from typing import Any

from ..config import Settings
from .cache import DualTierCache
from .errors import ExhaustedNoData, UpstreamError, UpstreamTimeout
from .interface import MarketDataSource
from .models import FetchResult
from .throttle import MinIntervalGate, ThrottleWindow

logger = logging.getLogger(__name__)

THROTTLED_MESSAGE = "Rate limit protection: serving cached data"

_COIN_ID = re.compile(r"^[a-z0-9][a-z0-9-]{0,63}$")


class ThrottledFetcher:
    """Produces the best available value for one logical resource.

    Order of preference:
      1. the min-interval gate's last result (streaming path only)
      2. the Fresh cache tier
      3. an upstream call, if its own window and the shared window allow one
      4. the Stale tier, when the window is exhausted or the upstream fails

    A successful upstream call writes both tiers. Concurrent fetch() calls on
    the same fetcher are serialised, so a burst of cache misses costs one
    upstream call rather than one per caller.
    """

    def __init__(
        self,
        resource: str,
        loader: Callable[[], Awaitable[Any]],
        cache: DualTierCache,
        *,
        fresh_ttl: float = 120.0,
        max_requests: int = 20,
        window: float = 60.0,
        timeout: float = 10.0,
        min_interval: float | None = None,
        shared_window: ThrottleWindow | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.resource = resource
        self._loader = loader
        self._cache = cache
        self._fresh_ttl = fresh_ttl
        self._timeout = timeout
        self.window = ThrottleWindow(max_requests=max_requests, window=window, clock=clock)
        self.gate = MinIntervalGate(min_interval, clock=clock) if min_interval else None
        self.shared_window = shared_window
        self._lock = asyncio.Lock()

    async def fetch(self) -> FetchResult:
        """Raises ExhaustedNoData, or the classified UpstreamError when no stale value exists."""
        async with self._lock:
            return await self._fetch()

    async def _fetch(self) -> FetchResult:
        if self.gate is not None:
            recent = self.gate.reusable()
            if recent is not None:
                return FetchResult(value=recent, cached=True)

        fresh = self._cache.fresh(self.resource)
        if fresh is not None:
            logger.debug("Serving %s from cache", self.resource)
            return FetchResult(value=fresh, cached=True)

        exhausted = [w for w in self._windows() if w.exhausted()]
        if exhausted:
            logger.warning("Self-imposed rate limit reached for %s, serving stale data", self.resource)
            stale = self._cache.stale(self.resource)
            if stale is not None:
                return FetchResult(value=stale, cached=True, stale=True, message=THROTTLED_MESSAGE)
            raise ExhaustedNoData(
                self.resource, retry_after=max(w.retry_after() for w in exhausted)
            )

        count = self.window.acquire()
        if self.shared_window is not None:
            self.shared_window.acquire()
        logger.info(
            "Cache miss for %s, upstream request %d/%d in current window",
            self.resource,
            count,
            self.window.max_requests,
        )
        if self.gate is not None:
            self.gate.mark_attempt()

        try:
            value = await self._call_upstream()
        except UpstreamError as e:
            stale = self._cache.stale(self.resource)
            if stale is None:
                logger.error("Upstream failed for %s and no cached data: %s", self.resource, e)
                raise
            logger.warning("Upstream failed for %s, serving stale data: %s", self.resource, e)
            return FetchResult(value=stale, cached=True, stale=True, message=e.reason, cause=e)

        self._cache.store(self.resource, value, self._fresh_ttl)
        if self.gate is not None:
            self.gate.record(value)
        return FetchResult(value=value, cached=False)

    @property
    def busy(self) -> bool:
        """True while a fetch holds or waits on this resource."""
        return self._lock.locked()

    def _windows(self) -> list[ThrottleWindow]:
        if self.shared_window is None:
            return [self.window]
        return [self.window, self.shared_window]

    async def _call_upstream(self) -> Any:
        try:
            async with asyncio.timeout(self._timeout):
                return await self._loader()
        except TimeoutError as e:
            raise UpstreamTimeout(
                f"Upstream call for {self.resource} exceeded {self._timeout:.1f}s"
            ) from e


def normalize_coin_id(coin_id: str) -> str:
    """Lower-case and validate a CoinGecko coin id. Raises ValueError."""
    normalized = coin_id.strip().lower()
    if not _COIN_ID.match(normalized):
        raise ValueError(f"Invalid coin id: {coin_id!r}")
    return normalized


class FetcherRegistry:
    """One ThrottledFetcher per logical resource, all over one shared cache.

    Resources:
        crypto_indices      market overview (GET /api/indices)
        history_<coin>      30-day history
        price_<coin>        live price for the event stream; also gated by
                            the stream interval so reconnect churn cannot
                            fetch faster than one call per interval

    Every fetcher counts against one shared window as well as its own, so
    spreading requests over many coin ids cannot outrun the upstream quota.
    At most ``settings.max_resources`` fetchers are kept; the least recently
    used idle one is dropped to make room. The markets fetcher is never dropped.
    """

    MARKETS = "crypto_indices"

    def __init__(
        self,
        source: MarketDataSource,
        cache: DualTierCache,
        settings: Settings,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.source = source
        self.cache = cache
        self._settings = settings
        self._clock = clock
        self.window = ThrottleWindow(
            max_requests=settings.global_max_requests, window=settings.rate_window, clock=clock
        )
        self._fetchers: OrderedDict[str, ThrottledFetcher] = OrderedDict()

    def markets(self) -> ThrottledFetcher:
        return self._get_or_create(self.MARKETS, self.source.fetch_markets)

    def history(self, coin_id: str) -> ThrottledFetcher:
        coin_id = normalize_coin_id(coin_id)
        return self._get_or_create(f"history_{coin_id}", lambda: self.source.fetch_history(coin_id))

    def price(self, coin_id: str) -> ThrottledFetcher:
        coin_id = normalize_coin_id(coin_id)
        return self._get_or_create(
            f"price_{coin_id}",
            lambda: self.source.fetch_price(coin_id),
            fresh_ttl=self._settings.stream_interval,
            min_interval=self._settings.stream_interval,
        )

    def get(self, resource: str) -> ThrottledFetcher | None:
        return self._fetchers.get(resource)

    def resources(self) -> list[str]:
        return list(self._fetchers)

    def _get_or_create(
        self,
        resource: str,
        loader: Callable[[], Awaitable[Any]],
        fresh_ttl: float | None = None,
        min_interval: float | None = None,
    ) -> ThrottledFetcher:
        fetcher = self._fetchers.get(resource)
        if fetcher is not None:
            self._fetchers.move_to_end(resource)
            return fetcher

        fetcher = ThrottledFetcher(
            resource,
            loader,
            self.cache,
            fresh_ttl=fresh_ttl or self._settings.cache_ttl,
            max_requests=self._settings.max_requests,
            window=self._settings.rate_window,
            timeout=self._settings.upstream_timeout,
            min_interval=min_interval,
            shared_window=self.window,
            clock=self._clock,
        )
        self._fetchers[resource] = fetcher
        self._evict()
        return fetcher

    def _evict(self) -> None:
        while len(self._fetchers) > self._settings.max_resources:
            victim = next(
                (
                    resource
                    for resource, fetcher in self._fetchers.items()
                    if resource != self.MARKETS and not fetcher.busy
                ),
                None,
            )
            if victim is None:
                return
            del self._fetchers[victim]
            logger.debug("Dropped idle fetcher for %s", victim)

    def __len__(self) -> int:
        return len(self._fetchers)
