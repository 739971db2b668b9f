"""Tests for the REST endpoints."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from coinfront.market.cache import DualTierCache
from coinfront.market.errors import (
    UpstreamHTTPError,
    UpstreamRateLimited,
    UpstreamUnavailable,
)
from coinfront.market.fetcher import FetcherRegistry
from coinfront.market.multiplexer import StreamMultiplexer
from coinfront.market.routes import create_market_router
from coinfront.market.stream import create_stream_router
from coinfront.market.timer import ManualScheduler


@pytest.fixture
def registry(source, settings):
    return FetcherRegistry(source, DualTierCache(), settings)


@pytest.fixture
def client(registry):
    multiplexer = StreamMultiplexer(registry.price, ManualScheduler())
    app = FastAPI()
    app.include_router(create_market_router(registry, multiplexer))
    app.include_router(create_stream_router(multiplexer))
    with TestClient(app) as test_client:
        yield test_client


class TestIndices:
    """GET /api/indices"""

    def test_fresh_then_cached(self, client, source):
        first = client.get("/api/indices")
        assert first.status_code == 200
        body = first.json()
        assert [row["id"] for row in body["data"]] == ["bitcoin", "ethereum"]
        assert body["cached"] is False
        assert "stale" not in body
        assert body["timestamp"].endswith("Z")

        second = client.get("/api/indices").json()
        assert second["cached"] is True
        assert source.call_count("markets") == 1

    def test_stale_on_upstream_failure(self, client, source, registry):
        client.get("/api/indices")
        registry.cache.expire("crypto_indices")
        source.fail_with = UpstreamUnavailable("connection refused")

        response = client.get("/api/indices")

        assert response.status_code == 200
        body = response.json()
        assert body["stale"] is True
        assert body["cached"] is True
        assert body["message"] == UpstreamUnavailable.reason
        assert len(body["data"]) == 2

    def test_failure_without_data_is_500(self, client, source):
        source.fail_with = UpstreamUnavailable("connection refused")
        response = client.get("/api/indices")
        assert response.status_code == 500
        assert response.json() == {
            "error": "Failed to fetch crypto data and no cached data available"
        }

    def test_upstream_429_without_data(self, client, source):
        source.fail_with = UpstreamRateLimited("HTTP 429", retry_after=60)
        response = client.get("/api/indices")
        assert response.status_code == 429
        assert response.json()["retryAfter"] == 60

    def test_self_throttled_without_data(self, client, source, settings):
        """Test that an exhausted window with nothing cached answers 429."""
        source.fail_with = UpstreamUnavailable("down")
        for _ in range(settings.max_requests):
            assert client.get("/api/indices").status_code == 500

        response = client.get("/api/indices")

        assert response.status_code == 429
        assert 1 <= response.json()["retryAfter"] <= 60
        assert source.call_count("markets") == settings.max_requests

    def test_self_throttled_with_stale(self, client, source, registry, settings):
        for _ in range(settings.max_requests):
            client.get("/api/indices")
            registry.cache.expire("crypto_indices")

        body = client.get("/api/indices").json()

        assert body["stale"] is True
        assert body["message"] == "Rate limit protection: serving cached data"
        assert source.call_count("markets") == settings.max_requests


class TestHistory:
    """GET /api/indices/{id}/history"""

    def test_history(self, client, source):
        response = client.get("/api/indices/bitcoin/history")
        assert response.status_code == 200
        assert response.json() == {"prices": [[1707580800000, 49000.0], [1707667200000, 50000.5]]}
        assert source.calls == [("history", "bitcoin")]

    def test_invalid_id(self, client, source):
        response = client.get("/api/indices/-bad-/history")
        assert response.status_code == 400
        assert source.calls == []

    def test_failure(self, client, source):
        source.fail_with = UpstreamHTTPError("HTTP 502", status_code=502)
        response = client.get("/api/indices/bitcoin/history")
        assert response.status_code == 500
        assert response.json() == {"error": "Failed to fetch historical data"}

    def test_rate_limited(self, client, source):
        source.fail_with = UpstreamRateLimited("HTTP 429")
        response = client.get("/api/indices/ethereum/history")
        assert response.status_code == 429
        assert response.json()["error"] == "Rate limit exceeded. Please try again later."


class TestUpstreamCheck:
    """GET /api/test-bitcoin"""

    def test_success_bypasses_cache(self, client, source):
        client.get("/api/test-bitcoin")
        body = client.get("/api/test-bitcoin").json()
        assert body["success"] is True
        assert body["data"] == {"price": 50000.50, "change24h": 2.5}
        assert source.call_count("price") == 2

    def test_rate_limited(self, client, source):
        source.fail_with = UpstreamRateLimited("HTTP 429")
        response = client.get("/api/test-bitcoin")
        assert response.status_code == 429
        assert response.json()["kind"] == "UpstreamRateLimited"

    def test_http_error_status_passes_through(self, client, source):
        source.fail_with = UpstreamHTTPError("HTTP 503", status_code=503)
        response = client.get("/api/test-bitcoin")
        assert response.status_code == 503
        assert response.json()["success"] is False


class TestHealth:
    def test_health(self, client):
        client.get("/api/indices")
        body = client.get("/api/health").json()
        assert body["status"] == "ok"
        assert body["cache_entries"] == 2
        assert body["resources"] == ["crypto_indices"]
        assert body["active_streams"] == []
        assert body["stream_subscribers"] == 0


class TestStreamRoute:
    def test_invalid_id_rejected(self, client):
        response = client.get("/api/stream/prices", params={"id": "not a coin"})
        assert response.status_code == 400
