"""Reconnecting consumer for the price event stream."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from enum import Enum

import httpx

from .sse import iter_events

logger = logging.getLogger(__name__)


class ClientState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class PriceStreamClient:
    """Follows a price stream and reconnects after a fixed delay when it drops.

    State machine:
        DISCONNECTED --start()--> CONNECTING --headers ok--> CONNECTED
        CONNECTING/CONNECTED --error or stream end--> DISCONNECTED
        DISCONNECTED --retry_delay elapsed--> CONNECTING

    close() tears down the connection and suppresses any pending retry.

    The latest values are kept on the instance (price, change24h, is_cached,
    error, last_update); `on_message` additionally receives every message.
    """

    def __init__(
        self,
        url: str,
        *,
        retry_delay: float = 5.0,
        http_client: httpx.AsyncClient | None = None,
        on_message: Callable[[dict], None] | None = None,
    ) -> None:
        self._url = url
        self._retry_delay = retry_delay
        self._client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(10.0, read=None))
        self._owns_client = http_client is None
        self._on_message = on_message
        self._task: asyncio.Task | None = None
        self._closed = False

        self.state = ClientState.DISCONNECTED
        self.price: float | None = None
        self.change24h: float | None = None
        self.is_cached = False
        self.error: str | None = None
        self.last_update: str | None = None
        self.connect_attempts = 0

    @property
    def is_connected(self) -> bool:
        return self.state is ClientState.CONNECTED

    def start(self) -> None:
        """Begin connecting in the background. No-op if already running."""
        if self._closed:
            raise RuntimeError("PriceStreamClient is closed")
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="price-stream-client")

    async def reconnect(self) -> None:
        """Drop the current connection (or pending retry) and connect now."""
        await self._cancel_task()
        self.start()

    async def close(self) -> None:
        """Tear down. Any pending retry is cancelled and never fires."""
        self._closed = True
        await self._cancel_task()
        self.state = ClientState.DISCONNECTED
        if self._owns_client:
            await self._client.aclose()

    # --- Internal ---

    async def _cancel_task(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None

    async def _run(self) -> None:
        while not self._closed:
            try:
                await self._connect_once()
                reason = "stream ended"
            except httpx.HTTPError as e:
                reason = str(e) or type(e).__name__
            self.state = ClientState.DISCONNECTED
            self.error = "Connection lost. Reconnecting..."
            logger.warning(
                "Price stream disconnected (%s); retrying in %.1fs", reason, self._retry_delay
            )
            await asyncio.sleep(self._retry_delay)

    async def _connect_once(self) -> None:
        self.state = ClientState.CONNECTING
        self.connect_attempts += 1
        async with self._client.stream(
            "GET", self._url, headers={"Accept": "text/event-stream"}
        ) as response:
            response.raise_for_status()
            self.state = ClientState.CONNECTED
            self.error = None
            logger.info("Connected to price stream %s", self._url)
            async for message in iter_events(response.aiter_lines()):
                self._handle(message)

    def _handle(self, message: dict) -> None:
        kind = message.get("type")
        if kind == "price_update":
            data = message.get("data") or {}
            if "price" in data:
                self.price = data["price"]
                self.change24h = data.get("change24h")
                self.is_cached = bool(data.get("cached"))
                self.last_update = message.get("timestamp")
                if not self.is_cached:
                    self.error = None
        elif kind == "error":
            self.error = message.get("message") or "Unable to fetch price data"
        elif kind == "rate_limit":
            self.error = "Rate limit reached. Waiting for next update..."
        elif kind == "warning":
            logger.warning("Stream warning: %s", message.get("message"))
        elif kind == "connected":
            logger.info("%s", message.get("message"))

        if self._on_message is not None:
            self._on_message(message)
