"""Tests for market data models."""

import re

import pytest

from coinfront.market.errors import UpstreamMalformed, UpstreamTimeout
from coinfront.market.models import (
    CryptoSnapshot,
    FetchResult,
    MessageType,
    PriceHistory,
    PriceQuote,
    StreamMessage,
    utc_now_iso,
)


class TestPriceQuote:
    """Tests for parsing the simple-price payload."""

    def test_parse(self):
        quote = PriceQuote.from_payload("bitcoin", {"bitcoin": {"usd": 50000.50, "usd_24h_change": 2.5}})
        assert quote == PriceQuote(price=50000.50, change24h=2.5)

    def test_int_price_is_float(self):
        quote = PriceQuote.from_payload("bitcoin", {"bitcoin": {"usd": 50000, "usd_24h_change": 0}})
        assert isinstance(quote.price, float)

    @pytest.mark.parametrize(
        "payload",
        [
            None,
            [],
            {},
            {"ethereum": {"usd": 1, "usd_24h_change": 1}},
            {"bitcoin": {"usd": 50000.5}},
            {"bitcoin": {"usd_24h_change": 2.5}},
            {"bitcoin": {"usd": "50000", "usd_24h_change": 2.5}},
            {"bitcoin": {"usd": None, "usd_24h_change": 2.5}},
            {"bitcoin": {"usd": True, "usd_24h_change": 2.5}},
        ],
    )
    def test_malformed_payloads(self, payload):
        """Test that partial or wrongly typed payloads are rejected, not half parsed."""
        with pytest.raises(UpstreamMalformed):
            PriceQuote.from_payload("bitcoin", payload)

    def test_to_dict(self):
        assert PriceQuote(50000.5, 2.5).to_dict(cached=True) == {
            "price": 50000.5,
            "change24h": 2.5,
            "cached": True,
        }


class TestCryptoSnapshot:
    """Tests for the markets row model."""

    def test_required_fields_only(self):
        row = CryptoSnapshot.from_dict(
            {"id": "bitcoin", "symbol": "btc", "name": "Bitcoin", "current_price": 50000}
        )
        assert row.current_price == 50000.0
        assert row.market_cap is None

    def test_full_row_round_trips_to_dict(self):
        raw = {
            "id": "bitcoin",
            "symbol": "btc",
            "name": "Bitcoin",
            "image": "https://example.com/btc.png",
            "current_price": 50000.5,
            "market_cap": 980000000000,
            "market_cap_rank": 1,
            "price_change_percentage_24h": 2.5,
            "total_volume": 25000000000,
            "high_24h": 51000,
            "low_24h": 49000,
            "circulating_supply": 19600000,
        }
        assert CryptoSnapshot.from_dict(raw).to_dict() == {
            **raw,
            "market_cap": 980000000000.0,
            "total_volume": 25000000000.0,
            "high_24h": 51000.0,
            "low_24h": 49000.0,
            "circulating_supply": 19600000.0,
        }

    def test_missing_price_rejected(self):
        with pytest.raises(UpstreamMalformed):
            CryptoSnapshot.from_dict({"id": "bitcoin", "symbol": "btc", "name": "Bitcoin"})

    def test_non_object_rejected(self):
        with pytest.raises(UpstreamMalformed):
            CryptoSnapshot.from_dict(["bitcoin"])


class TestPriceHistory:
    """Tests for the market_chart payload."""

    def test_parse(self):
        history = PriceHistory.from_payload({"prices": [[1707580800000, 49000.1], [1707667200000, 50000]]})
        assert history.prices == ((1707580800000, 49000.1), (1707667200000, 50000.0))
        assert history.to_dict() == {"prices": [[1707580800000, 49000.1], [1707667200000, 50000.0]]}

    @pytest.mark.parametrize(
        "payload",
        [{}, {"prices": None}, {"prices": [[1]]}, {"prices": [[1707580800000, None]]}],
    )
    def test_malformed(self, payload):
        with pytest.raises(UpstreamMalformed):
            PriceHistory.from_payload(payload)


class TestFetchResult:
    def test_degraded_only_with_cause(self):
        assert not FetchResult(value=1, cached=True, stale=True).degraded
        assert FetchResult(value=1, cached=True, stale=True, cause=UpstreamTimeout("x")).degraded
        assert not FetchResult(value=1, cached=False).degraded


class TestStreamMessage:
    def test_omits_absent_fields(self):
        msg = StreamMessage(type=MessageType.CONNECTED, message="hi", timestamp="t")
        assert msg.to_dict() == {"type": "connected", "message": "hi", "timestamp": "t"}

    def test_with_data(self):
        msg = StreamMessage(type=MessageType.PRICE_UPDATE, data={"price": 1.0}, timestamp="t")
        assert msg.to_dict() == {"type": "price_update", "data": {"price": 1.0}, "timestamp": "t"}

    def test_timestamp_is_iso8601_utc(self):
        assert re.fullmatch(r"\d{4}-\d\d-\d\dT\d\d:\d\d:\d\d\.\d{3}Z", utc_now_iso())
