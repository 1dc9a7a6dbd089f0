"""
Resolution rule table: market id -> {feed, predicate, description}.

Rules are tagged variants (threshold on a numeric feed, condition on a boolean
feed), validated once at startup and immutable afterwards. The built-in table
covers the three demo markets; a JSON file can replace it:

    {
      "feeds": {"bitcoin": {"kind": "price", "url": "...", "path": "...", ...}},
      "markets": {
        "0": {"kind": "threshold", "feed": "bitcoin", "operator": ">=",
              "threshold": 100000, "description": "Bitcoin hits $100,000"}
      }
    }
"""

from __future__ import annotations

import json
import logging
import operator
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from client.feeds import (
    ConditionFeedSpec,
    FeedSpec,
    PriceFeedSpec,
    SimulatedFeedSpec,
    default_feed_specs,
)
from config import ConfigurationMissing

logger = logging.getLogger(__name__)

_OPERATORS = {
    ">=": operator.ge,
    ">": operator.gt,
    "<=": operator.le,
    "<": operator.lt,
}


class ThresholdRule(BaseModel):
    """YES iff `reading <operator> threshold`."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["threshold"] = "threshold"
    market_id: int = Field(ge=0)
    feed: str
    threshold: float
    operator: Literal[">=", ">", "<=", "<"] = ">="
    description: str = ""

    def evaluate(self, value: float | bool) -> bool:
        if isinstance(value, bool):
            raise TypeError(f"Threshold rule for market {self.market_id} needs a number, got {value!r}")
        return _OPERATORS[self.operator](float(value), self.threshold)


class ConditionRule(BaseModel):
    """YES iff the boolean reading equals `expected`."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["condition"] = "condition"
    market_id: int = Field(ge=0)
    feed: str
    expected: bool = True
    description: str = ""

    def evaluate(self, value: float | bool) -> bool:
        if not isinstance(value, bool):
            raise TypeError(f"Condition rule for market {self.market_id} needs a boolean, got {value!r}")
        return value == self.expected


ResolutionRule = Annotated[Union[ThresholdRule, ConditionRule], Field(discriminator="kind")]

_RULE_ADAPTER = TypeAdapter(ResolutionRule)
_FEED_ADAPTER = TypeAdapter(FeedSpec)

# Which feed kinds each rule kind can consume
_COMPATIBLE_FEEDS = {
    "threshold": (PriceFeedSpec,),
    "condition": (ConditionFeedSpec, SimulatedFeedSpec),
}


class RuleTable(Mapping):
    """Read-only market_id -> rule mapping, iterated in ascending market id order."""

    def __init__(self, rules: Mapping[int, ThresholdRule | ConditionRule]):
        ordered = {mid: rules[mid] for mid in sorted(rules)}
        for mid, rule in ordered.items():
            if rule.market_id != mid:
                raise ConfigurationMissing(f"Rule keyed {mid} describes market {rule.market_id}")
        self._rules = MappingProxyType(ordered)

    def __getitem__(self, market_id: int) -> ThresholdRule | ConditionRule:
        return self._rules[market_id]

    def __iter__(self) -> Iterator[int]:
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    @property
    def feeds(self) -> set[str]:
        return {rule.feed for rule in self._rules.values()}


@dataclass(frozen=True)
class ResolutionConfig:
    feeds: Mapping[str, PriceFeedSpec | ConditionFeedSpec | SimulatedFeedSpec]
    rules: RuleTable


def default_rules() -> RuleTable:
    return RuleTable({
        0: ThresholdRule(market_id=0, feed="bitcoin", threshold=100_000, description="Bitcoin hits $100,000"),
        1: ConditionRule(market_id=1, feed="weather", expected=True, description="Rain in New York"),
        2: ThresholdRule(market_id=2, feed="ethereum", threshold=3_000, description="Ethereum above $3000"),
    })


def default_resolution_config() -> ResolutionConfig:
    return ResolutionConfig(feeds=MappingProxyType(default_feed_specs()), rules=default_rules())


def parse_resolution_config(data: dict) -> ResolutionConfig:
    """Build a ResolutionConfig from decoded JSON. Raises ConfigurationMissing on bad input."""
    if not isinstance(data, dict):
        raise ConfigurationMissing("Rules file must contain a JSON object")
    raw_feeds = data.get("feeds")
    raw_markets = data.get("markets")
    if not isinstance(raw_feeds, dict) or not raw_feeds:
        raise ConfigurationMissing("Rules file has no 'feeds' table")
    if not isinstance(raw_markets, dict) or not raw_markets:
        raise ConfigurationMissing("Rules file has no 'markets' table")

    feeds = {}
    for name, raw in raw_feeds.items():
        try:
            feeds[name] = _FEED_ADAPTER.validate_python(raw)
        except ValidationError as e:
            raise ConfigurationMissing(f"Invalid feed {name!r}: {e}") from e

    rules = {}
    for key, raw in raw_markets.items():
        try:
            market_id = int(key)
        except ValueError:
            raise ConfigurationMissing(f"Market key {key!r} is not an integer") from None
        if not isinstance(raw, dict):
            raise ConfigurationMissing(f"Rule for market {market_id} must be an object")
        try:
            rules[market_id] = _RULE_ADAPTER.validate_python({**raw, "market_id": market_id})
        except ValidationError as e:
            raise ConfigurationMissing(f"Invalid rule for market {market_id}: {e}") from e

    resolution = ResolutionConfig(feeds=MappingProxyType(feeds), rules=RuleTable(rules))
    validate_resolution_config(resolution)
    return resolution


def load_resolution_config(path: str | Path | None = None) -> ResolutionConfig:
    """Load the rules file at `path`, or the built-in table when no path is given."""
    if not path:
        return default_resolution_config()
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise ConfigurationMissing(f"Rules file not found: {path}") from None
    except json.JSONDecodeError as e:
        raise ConfigurationMissing(f"Rules file {path} is not valid JSON: {e}") from e
    resolution = parse_resolution_config(data)
    logger.info("Loaded %d rule(s) and %d feed(s) from %s", len(resolution.rules), len(resolution.feeds), path)
    return resolution


def validate_resolution_config(resolution: ResolutionConfig, market_ids: list[int] | None = None) -> None:
    """Every rule must name a known, compatible feed; every configured market must have a rule."""
    for market_id, rule in resolution.rules.items():
        spec = resolution.feeds.get(rule.feed)
        if spec is None:
            raise ConfigurationMissing(f"Market {market_id} uses unknown feed {rule.feed!r}")
        if not isinstance(spec, _COMPATIBLE_FEEDS[rule.kind]):
            raise ConfigurationMissing(
                f"Market {market_id}: {rule.kind} rule cannot use {spec.kind} feed {rule.feed!r}"
            )
    for market_id in market_ids or []:
        if market_id not in resolution.rules:
            raise ConfigurationMissing(f"No resolution rule for market {market_id}")
