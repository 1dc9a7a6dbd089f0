"""
Unit tests for client/feeds.py -- external feeds with mocked HTTP.
"""

from __future__ import annotations

import logging
from unittest.mock import MagicMock

import httpx
import pytest
import respx

from client.feeds import (
    ConditionFeed,
    ConditionFeedSpec,
    ConfidencePolicy,
    ConfidenceTier,
    FeedRegistry,
    FeedUnavailable,
    PriceFeed,
    PriceFeedSpec,
    SimulatedFeed,
    SimulatedFeedSpec,
    default_feed_specs,
    extract_path,
)
from resolver.models import FeedReading

COINDESK_URL = "https://api.coindesk.com/v1/bpi/currentprice.json"
COINGECKO_URL = "https://api.coingecko.com/api/v3/simple/price"
RAIN_URL = "https://weather.example.com/now"


def _bitcoin_feed() -> PriceFeed:
    return PriceFeed("bitcoin", default_feed_specs()["bitcoin"], timeout=1.0)


def _rng(value: float) -> MagicMock:
    rng = MagicMock()
    rng.random.return_value = value
    return rng


# ---------------------------------------------------------------------------
# Confidence policy
# ---------------------------------------------------------------------------

class TestConfidencePolicy:
    def test_static(self):
        assert ConfidencePolicy(default=92).confidence_for(1.0) == 92

    def test_tier_is_strictly_above(self):
        policy = ConfidencePolicy(default=85, tiers=(ConfidenceTier(above=50_000, confidence=95),))
        assert policy.confidence_for(50_000) == 85
        assert policy.confidence_for(50_000.01) == 95

    def test_first_matching_tier_wins(self):
        policy = ConfidencePolicy(
            default=50,
            tiers=(ConfidenceTier(above=100, confidence=90), ConfidenceTier(above=10, confidence=70)),
        )
        assert policy.confidence_for(500) == 90
        assert policy.confidence_for(50) == 70
        assert policy.confidence_for(5) == 50


class TestExtractPath:
    def test_nested(self):
        assert extract_path({"a": {"b": [1, {"c": 7}]}}, "a.b.1.c") == 7

    def test_missing_key(self):
        with pytest.raises(FeedUnavailable, match="missing key"):
            extract_path({"a": {}}, "a.b")

    def test_bad_index(self):
        with pytest.raises(FeedUnavailable):
            extract_path({"a": [1]}, "a.3")

    def test_scalar(self):
        with pytest.raises(FeedUnavailable):
            extract_path({"a": 5}, "a.b")


# ---------------------------------------------------------------------------
# Price feeds
# ---------------------------------------------------------------------------

class TestPriceFeed:
    @respx.mock
    def test_bitcoin_above_tier(self):
        respx.get(COINDESK_URL).mock(
            return_value=httpx.Response(200, json={"bpi": {"USD": {"rate_float": 67250.5}}})
        )
        reading = _bitcoin_feed().fetch()
        assert reading == FeedReading(value=67250.5, confidence=95)

    @respx.mock
    def test_bitcoin_below_tier(self):
        respx.get(COINDESK_URL).mock(
            return_value=httpx.Response(200, json={"bpi": {"USD": {"rate_float": 42000}}})
        )
        reading = _bitcoin_feed().fetch()
        assert reading.value == 42000.0
        assert reading.confidence == 85
        assert reading.fallback is False

    @respx.mock
    def test_ethereum_query_params(self):
        route = respx.get(COINGECKO_URL, params={"ids": "ethereum", "vs_currencies": "usd"}).mock(
            return_value=httpx.Response(200, json={"ethereum": {"usd": 3120.4}})
        )
        feed = PriceFeed("ethereum", default_feed_specs()["ethereum"])
        reading = feed.fetch()
        assert route.called
        assert reading == FeedReading(value=3120.4, confidence=92)

    @respx.mock
    def test_http_error_falls_back(self, caplog):
        respx.get(COINDESK_URL).mock(return_value=httpx.Response(500))
        with caplog.at_level(logging.WARNING, logger="client.feeds"):
            reading = _bitcoin_feed().fetch()
        assert reading == FeedReading(value=67000.0, confidence=90, fallback=True)
        assert "unavailable" in caplog.text

    @respx.mock
    def test_timeout_falls_back(self):
        respx.get(COINDESK_URL).mock(side_effect=httpx.ReadTimeout("slow"))
        reading = _bitcoin_feed().fetch()
        assert reading.fallback is True
        assert reading.value == 67000.0

    @respx.mock
    def test_invalid_json_falls_back(self):
        respx.get(COINDESK_URL).mock(return_value=httpx.Response(200, text="<html>"))
        assert _bitcoin_feed().fetch().fallback is True

    @respx.mock
    def test_missing_key_falls_back(self):
        respx.get(COINDESK_URL).mock(return_value=httpx.Response(200, json={"bpi": {}}))
        assert _bitcoin_feed().fetch().fallback is True

    @pytest.mark.parametrize("raw", [0, -5, "abc", True, None])
    def test_implausible_price_falls_back(self, raw):
        with respx.mock:
            respx.get(COINDESK_URL).mock(
                return_value=httpx.Response(200, json={"bpi": {"USD": {"rate_float": raw}}})
            )
            assert _bitcoin_feed().fetch().fallback is True

    @respx.mock
    def test_numeric_string_accepted(self):
        respx.get(COINDESK_URL).mock(
            return_value=httpx.Response(200, json={"bpi": {"USD": {"rate_float": "101000.25"}}})
        )
        assert _bitcoin_feed().fetch().value == 101000.25


# ---------------------------------------------------------------------------
# Condition and simulated feeds
# ---------------------------------------------------------------------------

class TestConditionFeed:
    def _feed(self) -> ConditionFeed:
        spec = ConditionFeedSpec(url=RAIN_URL, path="precip_mm", above=0.0, confidence=88, fallback_confidence=40)
        return ConditionFeed("rain", spec)

    @respx.mock
    def test_numeric_above(self):
        respx.get(RAIN_URL).mock(return_value=httpx.Response(200, json={"precip_mm": 1.2}))
        assert self._feed().fetch() == FeedReading(value=True, confidence=88)

    @respx.mock
    def test_numeric_not_above(self):
        respx.get(RAIN_URL).mock(return_value=httpx.Response(200, json={"precip_mm": 0}))
        assert self._feed().fetch().value is False

    @respx.mock
    def test_boolean_taken_as_is(self):
        respx.get(RAIN_URL).mock(return_value=httpx.Response(200, json={"precip_mm": True}))
        assert self._feed().fetch().value is True

    @respx.mock
    def test_failure_falls_back(self):
        respx.get(RAIN_URL).mock(side_effect=httpx.ConnectError("down"))
        assert self._feed().fetch() == FeedReading(value=False, confidence=40, fallback=True)


class TestSimulatedFeed:
    def test_true_below_probability(self):
        feed = SimulatedFeed("weather", SimulatedFeedSpec(probability=0.4, confidence=85), rng=_rng(0.39))
        assert feed.fetch() == FeedReading(value=True, confidence=85)

    def test_false_at_or_above_probability(self):
        feed = SimulatedFeed("weather", SimulatedFeedSpec(probability=0.4, confidence=85), rng=_rng(0.4))
        assert feed.fetch() == FeedReading(value=False, confidence=85)

    def test_unexpected_error_falls_back(self):
        rng = MagicMock()
        rng.random.side_effect = RuntimeError("boom")
        feed = SimulatedFeed("weather", SimulatedFeedSpec(probability=0.4, confidence=85), rng=rng)
        reading = feed.fetch()
        assert reading.fallback is True
        assert reading.value is False


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class TestFeedRegistry:
    def test_defaults(self):
        registry = FeedRegistry.from_specs(default_feed_specs(), rng=_rng(0.9))
        assert registry.names == ["bitcoin", "ethereum", "weather"]
        assert "weather" in registry
        assert registry.fetch("weather").value is False

    def test_unknown_feed(self):
        registry = FeedRegistry.from_specs(default_feed_specs())
        with pytest.raises(KeyError):
            registry.fetch("gold")

    def test_spec_validation(self):
        with pytest.raises(ValueError):
            PriceFeedSpec(
                url=COINDESK_URL,
                path="x",
                confidence=ConfidencePolicy(default=101),
                fallback_value=1,
                fallback_confidence=50,
            )
