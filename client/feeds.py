"""
External data feeds. Each feed fetches one data point and normalizes it to a
FeedReading (value, confidence).

A feed never raises past fetch(): transport and parse failures are logged and
replaced by the feed's fixed fallback reading. There is no retry here; the
resolver loop's next cycle is the retry.
"""

from __future__ import annotations

import logging
import math
import random
from typing import Annotated, Literal, Union

import httpx
from pydantic import BaseModel, ConfigDict, Field

from resolver.models import FeedReading

logger = logging.getLogger(__name__)

_TIMEOUT = 10.0


class FeedUnavailable(Exception):
    """Raised inside a feed when the source cannot be reached or parsed."""
    pass


# ---------------------------------------------------------------------------
# Feed configuration (tagged variants, validated once at startup)
# ---------------------------------------------------------------------------


class ConfidenceTier(BaseModel):
    model_config = ConfigDict(frozen=True)

    above: float
    confidence: int = Field(ge=0, le=100)


class ConfidencePolicy(BaseModel):
    """
    Heuristic confidence for numeric readings. The first tier whose bound the
    value strictly exceeds wins; otherwise `default`. No tiers = static.
    """
    model_config = ConfigDict(frozen=True)

    default: int = Field(ge=0, le=100)
    tiers: tuple[ConfidenceTier, ...] = ()

    def confidence_for(self, value: float) -> int:
        for tier in self.tiers:
            if value > tier.above:
                return tier.confidence
        return self.default


class PriceFeedSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["price"] = "price"
    url: str
    params: dict[str, str] = Field(default_factory=dict)
    path: str  # dotted path into the JSON body, e.g. "bpi.USD.rate_float"
    confidence: ConfidencePolicy
    fallback_value: float
    fallback_confidence: int = Field(ge=0, le=100)


class ConditionFeedSpec(BaseModel):
    """Boolean feed: JSON value > `above` (or a JSON boolean taken as-is)."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["condition"] = "condition"
    url: str
    params: dict[str, str] = Field(default_factory=dict)
    path: str
    above: float = 0.0
    confidence: int = Field(ge=0, le=100)
    fallback_value: bool = False
    fallback_confidence: int = Field(ge=0, le=100)


class SimulatedFeedSpec(BaseModel):
    """Demo feed: true with the given probability, static confidence."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["simulated"] = "simulated"
    probability: float = Field(ge=0.0, le=1.0)
    confidence: int = Field(ge=0, le=100)


FeedSpec = Annotated[
    Union[PriceFeedSpec, ConditionFeedSpec, SimulatedFeedSpec],
    Field(discriminator="kind"),
]


def default_feed_specs() -> dict[str, PriceFeedSpec | ConditionFeedSpec | SimulatedFeedSpec]:
    """Built-in feeds: bitcoin and ethereum spot prices, simulated New York rain."""
    return {
        "bitcoin": PriceFeedSpec(
            url="https://api.coindesk.com/v1/bpi/currentprice.json",
            path="bpi.USD.rate_float",
            confidence=ConfidencePolicy(default=85, tiers=(ConfidenceTier(above=50_000, confidence=95),)),
            fallback_value=67_000,
            fallback_confidence=90,
        ),
        "ethereum": PriceFeedSpec(
            url="https://api.coingecko.com/api/v3/simple/price",
            params={"ids": "ethereum", "vs_currencies": "usd"},
            path="ethereum.usd",
            confidence=ConfidencePolicy(default=92),
            fallback_value=2_800,
            fallback_confidence=88,
        ),
        "weather": SimulatedFeedSpec(probability=0.4, confidence=85),
    }


# ---------------------------------------------------------------------------
# Feed implementations
# ---------------------------------------------------------------------------


def extract_path(data, path: str):
    """Walk a dotted path through nested dicts/lists ("a.b.0.c")."""
    node = data
    for part in path.split("."):
        if isinstance(node, list):
            try:
                node = node[int(part)]
            except (ValueError, IndexError):
                raise FeedUnavailable(f"Path {path!r}: no list element {part!r}") from None
        elif isinstance(node, dict):
            if part not in node:
                raise FeedUnavailable(f"Path {path!r}: missing key {part!r}")
            node = node[part]
        else:
            raise FeedUnavailable(f"Path {path!r}: cannot descend into {type(node).__name__}")
    return node


def _get_json(url: str, params: dict[str, str], timeout: float):
    try:
        resp = httpx.get(url, params=params or None, timeout=timeout)
        resp.raise_for_status()
        return resp.json()
    except httpx.HTTPError as e:
        raise FeedUnavailable(f"{url}: {e}") from e
    except ValueError as e:
        raise FeedUnavailable(f"{url}: invalid JSON: {e}") from e


class Feed:
    """Base feed. Subclasses implement _read() and may raise FeedUnavailable."""

    def __init__(self, name: str, fallback: FeedReading):
        self.name = name
        self.fallback = fallback

    def fetch(self) -> FeedReading:
        try:
            return self._read()
        except FeedUnavailable as e:
            logger.warning(
                "Feed %s unavailable, using fallback value=%s confidence=%d: %s",
                self.name, self.fallback.value, self.fallback.confidence, e,
            )
        except Exception as e:
            logger.error("Feed %s failed unexpectedly, using fallback: %s", self.name, e, exc_info=True)
        return self.fallback

    def _read(self) -> FeedReading:
        raise NotImplementedError


class PriceFeed(Feed):
    def __init__(self, name: str, spec: PriceFeedSpec, timeout: float = _TIMEOUT):
        super().__init__(
            name,
            FeedReading(value=float(spec.fallback_value), confidence=spec.fallback_confidence, fallback=True),
        )
        self._spec = spec
        self._timeout = timeout

    def _read(self) -> FeedReading:
        data = _get_json(self._spec.url, self._spec.params, self._timeout)
        raw = extract_path(data, self._spec.path)
        if isinstance(raw, bool):
            raise FeedUnavailable(f"Expected a price at {self._spec.path!r}, got boolean")
        try:
            price = float(raw)
        except (TypeError, ValueError):
            raise FeedUnavailable(f"Non-numeric price at {self._spec.path!r}: {raw!r}") from None
        if not math.isfinite(price) or price <= 0:
            raise FeedUnavailable(f"Implausible price {price!r}")
        confidence = self._spec.confidence.confidence_for(price)
        logger.debug("Feed %s: price=%.2f confidence=%d", self.name, price, confidence)
        return FeedReading(value=price, confidence=confidence)


class ConditionFeed(Feed):
    def __init__(self, name: str, spec: ConditionFeedSpec, timeout: float = _TIMEOUT):
        super().__init__(
            name,
            FeedReading(value=spec.fallback_value, confidence=spec.fallback_confidence, fallback=True),
        )
        self._spec = spec
        self._timeout = timeout

    def _read(self) -> FeedReading:
        data = _get_json(self._spec.url, self._spec.params, self._timeout)
        raw = extract_path(data, self._spec.path)
        if isinstance(raw, bool):
            value = raw
        else:
            try:
                number = float(raw)
            except (TypeError, ValueError):
                raise FeedUnavailable(f"Non-numeric value at {self._spec.path!r}: {raw!r}") from None
            if not math.isfinite(number):
                raise FeedUnavailable(f"Non-finite value at {self._spec.path!r}")
            value = number > self._spec.above
        logger.debug("Feed %s: condition=%s confidence=%d", self.name, value, self._spec.confidence)
        return FeedReading(value=value, confidence=self._spec.confidence)


class SimulatedFeed(Feed):
    def __init__(self, name: str, spec: SimulatedFeedSpec, rng: random.Random | None = None):
        super().__init__(name, FeedReading(value=False, confidence=spec.confidence, fallback=True))
        self._spec = spec
        self._rng = rng or random.Random()

    def _read(self) -> FeedReading:
        value = self._rng.random() < self._spec.probability
        return FeedReading(value=value, confidence=self._spec.confidence)


def build_feed(
    name: str,
    spec: PriceFeedSpec | ConditionFeedSpec | SimulatedFeedSpec,
    timeout: float = _TIMEOUT,
    rng: random.Random | None = None,
) -> Feed:
    if isinstance(spec, PriceFeedSpec):
        return PriceFeed(name, spec, timeout)
    if isinstance(spec, ConditionFeedSpec):
        return ConditionFeed(name, spec, timeout)
    if isinstance(spec, SimulatedFeedSpec):
        return SimulatedFeed(name, spec, rng)
    raise TypeError(f"Unsupported feed spec for {name}: {type(spec).__name__}")


class FeedRegistry:
    """Named feeds. fetch(name) returns a reading and never raises for a known feed."""

    def __init__(self, feeds: dict[str, Feed]):
        self._feeds = dict(feeds)

    @classmethod
    def from_specs(
        cls,
        specs: dict[str, PriceFeedSpec | ConditionFeedSpec | SimulatedFeedSpec],
        timeout: float = _TIMEOUT,
        rng: random.Random | None = None,
    ) -> FeedRegistry:
        return cls({name: build_feed(name, spec, timeout, rng) for name, spec in specs.items()})

    def __contains__(self, name: str) -> bool:
        return name in self._feeds

    @property
    def names(self) -> list[str]:
        return sorted(self._feeds)

    def fetch(self, name: str) -> FeedReading:
        return self._feeds[name].fetch()
