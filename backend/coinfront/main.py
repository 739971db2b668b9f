"""FastAPI application wiring."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .config import Settings
from .market import (
    DualTierCache,
    FetcherRegistry,
    StreamMultiplexer,
    create_market_data_source,
    create_market_router,
    create_stream_router,
)
from .market.timer import AsyncioScheduler

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the app. All state is created here and lives on ``app.state``."""
    settings = settings or Settings.from_env()

    cache = DualTierCache()
    source = create_market_data_source(settings)
    registry = FetcherRegistry(source, cache, settings)
    multiplexer = StreamMultiplexer(
        registry.price,
        AsyncioScheduler(),
        period=settings.stream_interval,
        heartbeat_interval=settings.heartbeat_interval,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "coinfront starting: %d req/%.0fs per resource, %.0fs cache TTL",
            settings.max_requests,
            settings.rate_window,
            settings.cache_ttl,
        )
        yield
        multiplexer.shutdown()
        await source.aclose()
        logger.info("coinfront stopped")

    app = FastAPI(title="coinfront", lifespan=lifespan)
    app.state.settings = settings
    app.state.cache = cache
    app.state.registry = registry
    app.state.multiplexer = multiplexer
    app.include_router(create_market_router(registry, multiplexer))
    app.include_router(create_stream_router(multiplexer, queue_size=settings.stream_queue_size))
    return app


def build_app() -> FastAPI:
    """Entry point for ``uvicorn --factory coinfront.main:build_app``."""
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    return create_app(settings)


def run() -> None:
    """Console entry point: serve with uvicorn."""
    import uvicorn

    settings = Settings.from_env()
    uvicorn.run("coinfront.main:build_app", factory=True, host=settings.host, port=settings.port)
