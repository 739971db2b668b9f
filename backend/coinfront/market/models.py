"""Data models for market data."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .errors import UpstreamError, UpstreamMalformed


def utc_now_iso() -> str:
    """ISO-8601 UTC timestamp with millisecond precision, e.g. 2024-02-10T16:00:00.000Z."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _number(value: Any, what: str) -> float:
    """Accept ints and floats only (bool is rejected). Raises UpstreamMalformed."""
    if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value):
        raise UpstreamMalformed(f"Expected a number for {what}, got {value!r}")
    return float(value)


def _optional_number(value: Any, what: str) -> float | None:
    if value is None:
        return None
    return _number(value, what)


@dataclass(frozen=True, slots=True)
class PriceQuote:
    """Latest USD price and 24h change for one coin."""

    price: float
    change24h: float

    @classmethod
    def from_payload(cls, coin_id: str, payload: Any) -> PriceQuote:
        """Parse `{<coin_id>: {usd, usd_24h_change}}`.

        A partially populated payload is a failure, never a partial success.
        """
        if not isinstance(payload, dict) or not isinstance(payload.get(coin_id), dict):
            raise UpstreamMalformed(f"Price payload has no entry for {coin_id!r}")
        entry = payload[coin_id]
        if "usd" not in entry or "usd_24h_change" not in entry:
            raise UpstreamMalformed(f"Price payload for {coin_id!r} is missing usd fields")
        return cls(
            price=_number(entry["usd"], f"{coin_id}.usd"),
            change24h=_number(entry["usd_24h_change"], f"{coin_id}.usd_24h_change"),
        )

    def to_dict(self, cached: bool) -> dict:
        """Serialize for the price_update frame."""
        return {"price": self.price, "change24h": self.change24h, "cached": cached}


@dataclass(frozen=True, slots=True)
class CryptoSnapshot:
    """One row of the market overview (coins ordered by market cap)."""

    id: str
    symbol: str
    name: str
    current_price: float
    image: str | None = None
    market_cap: float | None = None
    market_cap_rank: int | None = None
    price_change_percentage_24h: float | None = None
    total_volume: float | None = None
    high_24h: float | None = None
    low_24h: float | None = None
    circulating_supply: float | None = None

    @classmethod
    def from_dict(cls, raw: Any) -> CryptoSnapshot:
        if not isinstance(raw, dict):
            raise UpstreamMalformed(f"Market row is not an object: {raw!r}")
        try:
            coin_id = raw["id"]
            symbol = raw["symbol"]
            name = raw["name"]
            current_price = raw["current_price"]
        except KeyError as e:
            raise UpstreamMalformed(f"Market row is missing field {e.args[0]!r}") from e
        if not all(isinstance(v, str) and v for v in (coin_id, symbol, name)):
            raise UpstreamMalformed(f"Market row has invalid identity fields: {raw!r}")

        rank = raw.get("market_cap_rank")
        return cls(
            id=coin_id,
            symbol=symbol,
            name=name,
            current_price=_number(current_price, f"{coin_id}.current_price"),
            image=raw.get("image"),
            market_cap=_optional_number(raw.get("market_cap"), f"{coin_id}.market_cap"),
            market_cap_rank=int(rank) if isinstance(rank, (int, float)) else None,
            price_change_percentage_24h=_optional_number(
                raw.get("price_change_percentage_24h"), f"{coin_id}.price_change_percentage_24h"
            ),
            total_volume=_optional_number(raw.get("total_volume"), f"{coin_id}.total_volume"),
            high_24h=_optional_number(raw.get("high_24h"), f"{coin_id}.high_24h"),
            low_24h=_optional_number(raw.get("low_24h"), f"{coin_id}.low_24h"),
            circulating_supply=_optional_number(
                raw.get("circulating_supply"), f"{coin_id}.circulating_supply"
            ),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "name": self.name,
            "image": self.image,
            "current_price": self.current_price,
            "market_cap": self.market_cap,
            "market_cap_rank": self.market_cap_rank,
            "price_change_percentage_24h": self.price_change_percentage_24h,
            "total_volume": self.total_volume,
            "high_24h": self.high_24h,
            "low_24h": self.low_24h,
            "circulating_supply": self.circulating_supply,
        }


@dataclass(frozen=True, slots=True)
class PriceHistory:
    """30-day price series as `(timestamp_ms, price)` pairs."""

    prices: tuple[tuple[int, float], ...]

    @classmethod
    def from_payload(cls, payload: Any) -> PriceHistory:
        if not isinstance(payload, dict) or not isinstance(payload.get("prices"), list):
            raise UpstreamMalformed("History payload has no 'prices' list")
        points = []
        for point in payload["prices"]:
            if not isinstance(point, (list, tuple)) or len(point) < 2:
                raise UpstreamMalformed(f"History point is not a [timestamp, price] pair: {point!r}")
            points.append((int(_number(point[0], "timestamp")), _number(point[1], "price")))
        return cls(prices=tuple(points))

    def to_dict(self) -> dict:
        return {"prices": [[ts, price] for ts, price in self.prices]}


@dataclass(frozen=True, slots=True)
class FetchResult:
    """Best available value for a resource plus where it came from.

    cached: served from a cache tier (or the min-interval gate) without a
        fresh upstream call.
    stale: served from the never-expiring backup tier.
    cause: the upstream failure that forced a stale fallback, if any.
    """

    value: Any
    cached: bool
    stale: bool = False
    message: str | None = None
    cause: UpstreamError | None = None

    @property
    def degraded(self) -> bool:
        """True when stale because the upstream failed (not merely throttled)."""
        return self.stale and self.cause is not None


class MessageType(str, Enum):
    CONNECTED = "connected"
    PRICE_UPDATE = "price_update"
    ERROR = "error"
    RATE_LIMIT = "rate_limit"
    WARNING = "warning"


@dataclass(frozen=True, slots=True)
class StreamMessage:
    """One message on the client-facing event stream."""

    type: MessageType
    data: dict | None = None
    message: str | None = None
    timestamp: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict:
        """Serialize for SSE transmission, omitting absent fields."""
        out: dict[str, Any] = {"type": self.type.value}
        if self.data is not None:
            out["data"] = self.data
        if self.message is not None:
            out["message"] = self.message
        out["timestamp"] = self.timestamp
        return out
