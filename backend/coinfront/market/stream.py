"""SSE streaming endpoint for live price updates."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import StreamingResponse

from .errors import SubscriptionWriteFailed
from .fetcher import normalize_coin_id
from .multiplexer import QueueSink, StreamMultiplexer
from .sse import SSE_HEADERS, retry_directive

logger = logging.getLogger(__name__)

RETRY_MS = 5000


def create_stream_router(
    multiplexer: StreamMultiplexer,
    queue_size: int = 100,
    poll_timeout: float = 1.0,
) -> APIRouter:
    """Create the SSE streaming router with a reference to the multiplexer.

    This factory pattern lets us inject the multiplexer without globals.
    """
    router = APIRouter(prefix="/api/stream", tags=["streaming"])

    @router.get("/prices")
    async def stream_prices(
        request: Request,
        coin: str = Query("bitcoin", alias="id"),
    ) -> StreamingResponse:
        """SSE endpoint for live price updates of one coin.

        Every client of the same coin shares one upstream polling loop.
        Events look like:

            data: {"type": "price_update", "data": {"price": 50000.5, "change24h": 2.5, "cached": false}, "timestamp": "..."}

        Heartbeat comments (``: heartbeat``) keep idle proxies from closing
        the connection.
        """
        try:
            resource = normalize_coin_id(coin)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e

        return StreamingResponse(
            _generate_events(multiplexer, resource, request, queue_size, poll_timeout),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    return router


async def _generate_events(
    multiplexer: StreamMultiplexer,
    resource: str,
    request: Request,
    queue_size: int = 100,
    poll_timeout: float = 1.0,
) -> AsyncGenerator[str, None]:
    """Async generator relaying one subscriber's frames to the response.

    Stops when the client disconnects (checked whenever no frame arrives
    within `poll_timeout`) or when the multiplexer drops the subscriber.
    The subscription is always released on the way out.
    """
    # Tell the client how long to wait before reconnecting if the connection drops
    yield retry_directive(RETRY_MS)

    client_ip = request.client.host if request.client else "unknown"
    sink = QueueSink(maxsize=queue_size)
    try:
        subscription = await multiplexer.subscribe(resource, sink)
    except SubscriptionWriteFailed as e:
        logger.warning("SSE subscribe failed for %s: %s", client_ip, e)
        return
    logger.info("SSE client connected: %s (%s)", client_ip, resource)

    try:
        while True:
            frame = await sink.read(timeout=poll_timeout)
            if frame is not None:
                yield frame
                continue
            if await request.is_disconnected():
                logger.info("SSE client disconnected: %s", client_ip)
                break
            if not multiplexer.is_subscribed(subscription):
                logger.info("SSE client %s was dropped by the stream loop", client_ip)
                break
    except asyncio.CancelledError:
        logger.info("SSE stream cancelled for: %s", client_ip)
        raise
    finally:
        sink.close()
        multiplexer.unsubscribe(subscription)
