"""Tests for upstream error classification."""

import json

import httpx

from coinfront.market.errors import (
    DEFAULT_RETRY_AFTER,
    ExhaustedNoData,
    UpstreamHTTPError,
    UpstreamMalformed,
    UpstreamRateLimited,
    UpstreamTimeout,
    UpstreamUnavailable,
    classify_http_error,
)

REQUEST = httpx.Request("GET", "https://api.coingecko.com/api/v3/simple/price")


def _status_error(status: int, headers: dict | None = None) -> httpx.HTTPStatusError:
    response = httpx.Response(status, headers=headers, request=REQUEST)
    return httpx.HTTPStatusError(f"HTTP {status}", request=REQUEST, response=response)


class TestClassifyHttpError:
    def test_429_is_rate_limited(self):
        error = classify_http_error(_status_error(429))
        assert isinstance(error, UpstreamRateLimited)
        assert error.retry_after == DEFAULT_RETRY_AFTER

    def test_429_honours_retry_after_header(self):
        error = classify_http_error(_status_error(429, {"Retry-After": "120"}))
        assert error.retry_after == 120

    def test_5xx_is_http_error(self):
        error = classify_http_error(_status_error(503))
        assert isinstance(error, UpstreamHTTPError)
        assert error.status_code == 503

    def test_timeout(self):
        error = classify_http_error(httpx.ReadTimeout("slow", request=REQUEST))
        assert isinstance(error, UpstreamTimeout)

    def test_network_error(self):
        error = classify_http_error(httpx.ConnectError("refused", request=REQUEST))
        assert isinstance(error, UpstreamUnavailable)

    def test_invalid_json(self):
        try:
            json.loads("<html>")
        except ValueError as e:
            error = classify_http_error(e)
        assert isinstance(error, UpstreamMalformed)

    def test_already_classified_passes_through(self):
        original = UpstreamMalformed("missing usd")
        assert classify_http_error(original) is original


class TestExhaustedNoData:
    def test_carries_resource_and_retry_after(self):
        error = ExhaustedNoData("crypto_indices", retry_after=12)
        assert error.resource == "crypto_indices"
        assert error.retry_after == 12
        assert "crypto_indices" in str(error)
