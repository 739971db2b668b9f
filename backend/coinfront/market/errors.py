"""Error taxonomy for the market data layer.

Upstream failures are always masked by the stale tier when one exists; only
ExhaustedNoData and an upstream error with no fallback reach callers.
"""

from __future__ import annotations

import httpx

DEFAULT_RETRY_AFTER = 60


class MarketDataError(Exception):
    """Base class for everything the market data layer raises."""


class UpstreamError(MarketDataError):
    """The upstream provider did not produce a usable value."""

    #: Short human-readable reason used when serving stale data instead.
    reason = "Serving cached data due to API error"


class UpstreamTimeout(UpstreamError):
    """The upstream call exceeded its time bound."""

    reason = "Serving cached data due to API timeout"


class UpstreamRateLimited(UpstreamError):
    """The upstream answered HTTP 429."""

    reason = "Serving cached data due to API rate limit"

    def __init__(self, message: str, retry_after: int | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after if retry_after is not None else DEFAULT_RETRY_AFTER


class UpstreamMalformed(UpstreamError):
    """The upstream payload is missing expected fields. Never cached."""

    reason = "Serving cached data due to invalid API response"


class UpstreamHTTPError(UpstreamError):
    """Non-2xx upstream response other than 429."""

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class UpstreamUnavailable(UpstreamError):
    """Network-level failure reaching the upstream."""


class ExhaustedNoData(MarketDataError):
    """Self-imposed throttle engaged and neither tier holds data."""

    def __init__(self, resource: str, retry_after: int = DEFAULT_RETRY_AFTER) -> None:
        super().__init__(f"Rate limit protection engaged and no cached data for {resource!r}")
        self.resource = resource
        self.retry_after = retry_after


class SubscriptionWriteFailed(MarketDataError):
    """A subscriber's sink rejected a frame."""


def _parse_retry_after(value: str | None) -> int | None:
    if not value:
        return None
    try:
        return max(0, int(float(value)))
    except ValueError:
        return None


def classify_http_error(exc: Exception) -> UpstreamError:
    """Map an httpx (or decoding) exception onto the upstream taxonomy."""
    if isinstance(exc, UpstreamError):
        return exc
    if isinstance(exc, httpx.TimeoutException):
        return UpstreamTimeout(f"Upstream timed out: {exc}")
    if isinstance(exc, httpx.HTTPStatusError):
        response = exc.response
        if response.status_code == 429:
            return UpstreamRateLimited(
                "Upstream rate limit exceeded (HTTP 429)",
                retry_after=_parse_retry_after(response.headers.get("Retry-After")),
            )
        return UpstreamHTTPError(
            f"Upstream returned HTTP {response.status_code}",
            status_code=response.status_code,
        )
    if isinstance(exc, httpx.RequestError):
        return UpstreamUnavailable(f"Upstream request failed: {exc}")
    if isinstance(exc, ValueError):
        # json.JSONDecodeError is a ValueError
        return UpstreamMalformed(f"Upstream returned invalid JSON: {exc}")
    return UpstreamUnavailable(f"Upstream call failed: {exc}")
