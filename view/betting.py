"""
Client write path: approve the settlement token, then place the bet.

Each write waits for its receipt before the next is sent, and the market
listing is refreshed only after the bet is confirmed. Failures raise BetFailed
with a message meant for the user; the caller's BetSelection is immutable, so
it is still there to retry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from client.chain import ChainClient, ChainReadFailed, ChainWriteFailed
from resolver.models import Outcome
from view.markets import MarketViewCache, to_display_units, to_raw_units

logger = logging.getLogger(__name__)


class BetFailed(Exception):
    """Human-readable failure of a client write."""
    pass


@dataclass(frozen=True)
class BetSelection:
    market_id: int
    outcome: Outcome
    amount: str  # display units as typed, e.g. "12.5"


@dataclass(frozen=True)
class BetReceipt:
    market_id: int
    outcome: Outcome
    amount_raw: int
    approve_tx: str
    bet_tx: str


def parse_amount(amount: str | Decimal, decimals: int) -> int:
    """Display amount -> positive integer token units. Raises BetFailed."""
    try:
        value = Decimal(str(amount).strip())
    except InvalidOperation:
        raise BetFailed(f"'{amount}' is not a valid amount") from None
    if not value.is_finite() or value <= 0:
        raise BetFailed("Enter an amount greater than zero")
    raw = to_raw_units(value, decimals)
    if raw <= 0:
        raise BetFailed(f"Amount {value} is below the smallest unit (10^-{decimals})")
    return raw


class BettingClient:
    def __init__(self, chain: ChainClient, cache: MarketViewCache | None = None, decimals: int = 6):
        self._chain = chain
        self._cache = cache
        self._decimals = decimals

    def place_bet(self, selection: BetSelection) -> BetReceipt:
        amount_raw = parse_amount(selection.amount, self._decimals)

        try:
            market = self._chain.get_market(selection.market_id)
        except ChainReadFailed as e:
            raise BetFailed(f"Could not load market {selection.market_id}: {e}") from e
        if market.resolved:
            raise BetFailed(f"Market {selection.market_id} is already resolved")

        logger.info(
            "Approving %s for market %d...", to_display_units(amount_raw, self._decimals), selection.market_id,
        )
        try:
            approve_tx = self._chain.approve(amount_raw)
        except ChainWriteFailed as e:
            raise BetFailed(f"Approval failed: {e}") from e

        logger.info("Placing %s bet on market %d...", selection.outcome.label, selection.market_id)
        try:
            bet_tx = self._chain.place_bet(selection.market_id, selection.outcome, amount_raw)
        except ChainWriteFailed as e:
            raise BetFailed(f"Betting failed: {e}") from e

        logger.info("Bet confirmed: %s", bet_tx)
        self._refresh()
        return BetReceipt(
            market_id=selection.market_id,
            outcome=selection.outcome,
            amount_raw=amount_raw,
            approve_tx=approve_tx,
            bet_tx=bet_tx,
        )

    def claim_winnings(self, market_id: int) -> str:
        try:
            tx = self._chain.claim_winnings(market_id)
        except ChainWriteFailed as e:
            raise BetFailed(f"Claim failed: {e}") from e
        self._refresh()
        return tx

    def balance(self) -> Decimal:
        try:
            return to_display_units(self._chain.token_balance(), self._decimals)
        except ChainReadFailed as e:
            raise BetFailed(f"Could not read balance: {e}") from e

    def potential_winnings(self, selection: BetSelection) -> Decimal:
        amount_raw = parse_amount(selection.amount, self._decimals)
        try:
            raw = self._chain.potential_winnings(selection.market_id, selection.outcome, amount_raw)
        except ChainReadFailed as e:
            raise BetFailed(f"Could not estimate winnings: {e}") from e
        return to_display_units(raw, self._decimals)

    def _refresh(self) -> None:
        if self._cache is None:
            return
        try:
            self._cache.get(force_refresh=True)
        except ChainReadFailed as e:
            # Bet is confirmed; a stale listing is only cosmetic.
            logger.warning("Market refresh after write failed: %s", e)
            self._cache.invalidate()
