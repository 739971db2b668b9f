"""CoinGecko API client for real market data."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from .errors import UpstreamMalformed, classify_http_error
from .interface import MarketDataSource
from .models import CryptoSnapshot, PriceHistory, PriceQuote

logger = logging.getLogger(__name__)

PUBLIC_BASE_URL = "https://api.coingecko.com/api/v3"
PRO_BASE_URL = "https://pro-api.coingecko.com/api/v3"


class CoinGeckoDataSource(MarketDataSource):
    """MarketDataSource backed by the CoinGecko REST API.

    Endpoints:
      - GET /simple/price               current price + 24h change
      - GET /coins/markets              top coins by market cap
      - GET /coins/{id}/market_chart    30-day history

    Rate limits:
      - Free tier: roughly 10-30 req/min, no key needed
      - Pro tier: higher quota, key sent as ``x-cg-pro-api-key``
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = 10.0,
        per_page: int = 15,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key or None
        self._base_url = base_url or (PRO_BASE_URL if self._api_key else PUBLIC_BASE_URL)
        self._per_page = per_page

        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["x-cg-pro-api-key"] = self._api_key
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )
        logger.info(
            "CoinGecko client using %s (%s)",
            self._base_url,
            "pro key" if self._api_key else "free tier",
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    async def fetch_price(self, coin_id: str) -> PriceQuote:
        payload = await self._get_json(
            "/simple/price",
            {"ids": coin_id, "vs_currencies": "usd", "include_24hr_change": "true"},
        )
        return PriceQuote.from_payload(coin_id, payload)

    async def fetch_markets(self) -> list[CryptoSnapshot]:
        payload = await self._get_json(
            "/coins/markets",
            {
                "vs_currency": "usd",
                "order": "market_cap_desc",
                "per_page": str(self._per_page),
                "page": "1",
            },
        )
        if not isinstance(payload, list):
            raise UpstreamMalformed("Markets payload is not a list")
        return [CryptoSnapshot.from_dict(row) for row in payload]

    async def fetch_history(self, coin_id: str, days: int = 30) -> PriceHistory:
        payload = await self._get_json(
            f"/coins/{coin_id}/market_chart",
            {"vs_currency": "usd", "days": str(days)},
        )
        return PriceHistory.from_payload(payload)

    async def aclose(self) -> None:
        await self._client.aclose()

    # --- Internal ---

    async def _get_json(self, path: str, params: dict[str, str]) -> Any:
        """GET `path` and decode JSON. Every failure leaves as an UpstreamError."""
        try:
            response = await self._client.get(path, params=params)
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            error = classify_http_error(e)
            logger.warning("CoinGecko %s failed: %s", path, error)
            raise error from e
