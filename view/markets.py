"""
Market view: read-only aggregation of on-chain markets into display-ready
records with derived odds.

Listing tolerates partial failure: a market whose read fails is logged and
left out, the rest of the listing is still returned.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal
from typing import Protocol

from resolver.models import Market, MarketState

logger = logging.getLogger(__name__)

_NEUTRAL_ODDS = Decimal("0.50")
_ODDS_QUANTUM = Decimal("0.01")


class MarketListReader(Protocol):
    def market_counter(self) -> int: ...

    def get_market(self, market_id: int) -> Market: ...


def to_display_units(raw: int, decimals: int) -> Decimal:
    """Integer token units -> decimal currency units (6 decimals: 1_500_000 -> 1.5)."""
    return Decimal(raw).scaleb(-decimals)


def to_raw_units(amount: Decimal | str | float, decimals: int) -> int:
    """Decimal currency units -> integer token units. Sub-unit precision is truncated."""
    return int(Decimal(str(amount)).scaleb(decimals).to_integral_value(rounding=ROUND_DOWN))


def calculate_odds(yes_amount: int, no_amount: int, is_yes: bool) -> Decimal:
    """
    Share of the pool on one side, to two decimals. An empty pool is 0.50 on
    both sides. YES is rounded half-up and NO is its complement, so the two
    sides always sum to exactly 1.00.
    """
    total = yes_amount + no_amount
    if total <= 0:
        return _NEUTRAL_ODDS
    yes = (Decimal(yes_amount) / Decimal(total)).quantize(_ODDS_QUANTUM, rounding=ROUND_HALF_UP)
    return yes if is_yes else Decimal("1.00") - yes


@dataclass(frozen=True)
class MarketView:
    id: int
    question: str
    description: str
    end_time: int
    resolution_time: int
    state: int
    total_yes: Decimal
    total_no: Decimal
    total_volume: Decimal
    yes_odds: Decimal
    no_odds: Decimal
    resolved: bool

    @property
    def status_label(self) -> str:
        if self.resolved:
            return "Resolved"
        if self.state == MarketState.OPEN:
            return "Active"
        if self.state == MarketState.CLOSED:
            return "Closed"
        if self.state == MarketState.RESOLVED:
            return "Resolved"
        return f"State {self.state}"


def build_view(market: Market, decimals: int) -> MarketView:
    return MarketView(
        id=market.id,
        question=market.question,
        description=market.description,
        end_time=market.end_time,
        resolution_time=market.resolution_time,
        state=market.state,
        total_yes=to_display_units(market.total_yes_amount, decimals),
        total_no=to_display_units(market.total_no_amount, decimals),
        total_volume=to_display_units(market.total_amount, decimals),
        yes_odds=calculate_odds(market.total_yes_amount, market.total_no_amount, True),
        no_odds=calculate_odds(market.total_yes_amount, market.total_no_amount, False),
        resolved=market.resolved,
    )


def list_markets(reader: MarketListReader, decimals: int = 6) -> list[MarketView]:
    """
    Read marketCounter() then each market in id order. A failed counter read
    propagates; a failed market read is logged and skipped.
    """
    count = reader.market_counter()
    logger.debug("Found %d markets", count)

    views: list[MarketView] = []
    for market_id in range(count):
        try:
            market = reader.get_market(market_id)
        except Exception as e:
            logger.warning("Failed to fetch market %d, leaving it out: %s", market_id, e)
            continue
        views.append(build_view(market, decimals))

    if len(views) < count:
        logger.info("Loaded %d of %d markets", len(views), count)
    else:
        logger.debug("Loaded %d markets", len(views))
    return views


class MarketViewCache:
    """
    Thread-safe TTL cache over list_markets(). Fetches happen outside the lock
    so a slow chain read never blocks readers of the cached listing.
    """

    def __init__(self, reader: MarketListReader, decimals: int = 6, ttl_sec: float = 15.0):
        self._reader = reader
        self._decimals = decimals
        self._ttl = ttl_sec
        self._lock = threading.Lock()
        self._views: list[MarketView] = []
        self._timestamp: float = 0.0
        self._loaded = False

    def _is_stale_unlocked(self) -> bool:
        return not self._loaded or time.time() - self._timestamp > self._ttl

    def get(self, force_refresh: bool = False) -> list[MarketView]:
        with self._lock:
            if not force_refresh and not self._is_stale_unlocked():
                logger.debug("Market view cache hit (%d markets)", len(self._views))
                return list(self._views)

        views = list_markets(self._reader, self._decimals)

        with self._lock:
            self._views = views
            self._timestamp = time.time()
            self._loaded = True
        return list(views)

    def find(self, market_id: int, force_refresh: bool = False) -> MarketView | None:
        for view in self.get(force_refresh=force_refresh):
            if view.id == market_id:
                return view
        return None

    def invalidate(self) -> None:
        with self._lock:
            self._loaded = False
