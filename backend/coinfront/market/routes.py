"""Request/response endpoints backed by the throttled fetchers."""

from __future__ import annotations

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from .errors import (
    ExhaustedNoData,
    MarketDataError,
    UpstreamHTTPError,
    UpstreamRateLimited,
)
from .fetcher import FetcherRegistry
from .models import utc_now_iso
from .multiplexer import StreamMultiplexer

logger = logging.getLogger(__name__)


def _failure_response(error: MarketDataError, rate_limited_text: str, failed_text: str) -> JSONResponse:
    """429 with retryAfter when throttled or rate limited, 500 otherwise."""
    if isinstance(error, (UpstreamRateLimited, ExhaustedNoData)):
        return JSONResponse(
            {"error": rate_limited_text, "retryAfter": error.retry_after},
            status_code=429,
        )
    return JSONResponse({"error": failed_text}, status_code=500)


def create_market_router(registry: FetcherRegistry, multiplexer: StreamMultiplexer) -> APIRouter:
    """Create the market REST router over a shared FetcherRegistry."""
    router = APIRouter(prefix="/api", tags=["market"])

    @router.get("/indices")
    async def get_indices() -> JSONResponse:
        """Top coins by market cap, cache first, stale on upstream trouble."""
        try:
            result = await registry.markets().fetch()
        except MarketDataError as e:
            logger.error("Indices unavailable: %s", e)
            return _failure_response(
                e,
                "Rate limit exceeded. No cached data available. Please try again in a few minutes.",
                "Failed to fetch crypto data and no cached data available",
            )

        body: dict = {
            "data": [row.to_dict() for row in result.value],
            "cached": result.cached,
        }
        if result.stale:
            body["stale"] = True
        if result.message:
            body["message"] = result.message
        body["timestamp"] = utc_now_iso()
        return JSONResponse(body)

    @router.get("/indices/{coin_id}/history")
    async def get_history(coin_id: str) -> JSONResponse:
        """30-day price history as ``{prices: [[timestampMs, price], ...]}``."""
        try:
            fetcher = registry.history(coin_id)
        except ValueError as e:
            return JSONResponse({"error": str(e)}, status_code=400)

        try:
            result = await fetcher.fetch()
        except MarketDataError as e:
            logger.error("History for %s unavailable: %s", coin_id, e)
            return _failure_response(
                e,
                "Rate limit exceeded. Please try again later.",
                "Failed to fetch historical data",
            )
        return JSONResponse(result.value.to_dict())

    @router.get("/test-bitcoin")
    async def test_bitcoin() -> JSONResponse:
        """Diagnostics check: one direct upstream call, bypassing cache and throttle."""
        try:
            quote = await registry.source.fetch_price("bitcoin")
        except MarketDataError as e:
            status = 500
            if isinstance(e, UpstreamRateLimited):
                status = 429
            elif isinstance(e, UpstreamHTTPError):
                status = e.status_code
            logger.warning("Upstream check failed: %s", e)
            return JSONResponse(
                {"success": False, "error": str(e), "kind": type(e).__name__},
                status_code=status,
            )
        return JSONResponse(
            {
                "success": True,
                "data": {"price": quote.price, "change24h": quote.change24h},
                "timestamp": utc_now_iso(),
            }
        )

    @router.get("/health")
    async def health() -> dict:
        return {
            "status": "ok",
            "cache_entries": len(registry.cache),
            "resources": registry.resources(),
            "active_streams": multiplexer.active_resources(),
            "stream_subscribers": multiplexer.subscriber_count(),
        }

    return router
