"""
Resolver loop. One worker, one timeline:

  IDLE -> POLLING(market) -> DECIDING -> GATED | SUBMITTING -> IDLE

Each cycle visits the configured markets in order, pausing between markets,
and runs to completion before the next cycle starts. Cycles start on a fixed
interval measured from the previous cycle's start; an overrunning cycle is
followed immediately by the next one, never overlapped.

stop() is honoured at market boundaries and during waits only, so a started
attest -> resolve sequence always finishes.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import Counter
from enum import Enum
from typing import Callable, Protocol

from client.chain import ChainReadFailed
from client.feeds import FeedRegistry
from monitor.display import print_cycle_header, print_cycle_summary
from resolver.decision import decide, passes_gate
from resolver.models import (
    CycleSummary,
    Market,
    MarketAction,
    MarketResult,
    SubmissionStatus,
)
from resolver.rules import RuleTable
from resolver.submitter import ChainSubmitter

logger = logging.getLogger(__name__)

_STATUS_TO_ACTION = {
    SubmissionStatus.SUBMITTED: MarketAction.SUBMITTED,
    SubmissionStatus.ALREADY_RESOLVED: MarketAction.ALREADY_RESOLVED,
    SubmissionStatus.FAILED: MarketAction.FAILED,
    SubmissionStatus.DRY_RUN: MarketAction.DRY_RUN,
}


class LoopState(Enum):
    IDLE = "idle"
    POLLING = "polling"
    DECIDING = "deciding"
    GATED = "gated"
    SUBMITTING = "submitting"


class MarketReader(Protocol):
    def get_market(self, market_id: int) -> Market: ...


class ResolverLoop:
    def __init__(
        self,
        feeds: FeedRegistry,
        rules: RuleTable,
        submitter: ChainSubmitter,
        market_ids: list[int],
        reader: MarketReader | None = None,
        confidence_threshold: int = 80,
        poll_interval_sec: float = 30.0,
        market_pacing_sec: float = 2.0,
        require_market_ended: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self._feeds = feeds
        self._rules = rules
        self._submitter = submitter
        self._market_ids = list(market_ids)
        self._reader = reader
        self._threshold = confidence_threshold
        self._interval = poll_interval_sec
        self._pacing = market_pacing_sec
        self._require_market_ended = require_market_ended
        self._clock = clock

        self._stop = threading.Event()
        self.state = LoopState.IDLE
        self.current_market: int | None = None
        self.cycles_completed = 0
        self.totals: Counter[MarketAction] = Counter()

    # -- control -------------------------------------------------------------

    def stop(self) -> None:
        """Request shutdown. An in-flight submission finishes first."""
        if not self._stop.is_set():
            logger.info("Shutdown requested; finishing current market...")
        self._stop.set()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def _wait(self, seconds: float) -> bool:
        """Sleep up to *seconds*. Returns False if interrupted by stop()."""
        if seconds <= 0:
            return not self._stop.is_set()
        return not self._stop.wait(seconds)

    def _set_state(self, state: LoopState, market_id: int | None = None) -> None:
        self.state = state
        if market_id is not None:
            self.current_market = market_id
        elif state == LoopState.IDLE:
            self.current_market = None

    # -- one market ----------------------------------------------------------

    def resolve_market(self, market_id: int) -> MarketResult:
        """Poll, decide, gate and (maybe) submit one market. Per-market errors are returned, not raised."""
        try:
            return self._resolve_market(market_id)
        finally:
            self._set_state(LoopState.IDLE)

    def _resolve_market(self, market_id: int) -> MarketResult:
        rule = self._rules.get(market_id)
        if rule is None:
            logger.warning("No resolution rule for market %d", market_id)
            return MarketResult(market_id, MarketAction.SKIPPED, detail="no rule")

        self._set_state(LoopState.POLLING, market_id)
        logger.info("Checking market %d: %s", market_id, rule.description or rule.feed)

        record = self._submitter.unfinished(market_id)
        if record is not None:
            # Attested earlier; the resolution must match, whatever the feed says now.
            self._set_state(LoopState.SUBMITTING, market_id)
            result = self._submitter.resume(record)
            return MarketResult(
                market_id,
                _STATUS_TO_ACTION[result.status],
                result.outcome,
                record.confidence,
                detail=result.error or (result.market_tx or ""),
            )

        if self._require_market_ended and self._reader is not None:
            try:
                market = self._reader.get_market(market_id)
            except ChainReadFailed as e:
                logger.warning("  Could not read market %d, skipping this cycle: %s", market_id, e)
                return MarketResult(market_id, MarketAction.SKIPPED, detail=f"read failed: {e}")
            if not market.has_ended(self._clock()):
                logger.info("  Market %d has not ended yet (endTime %d), skipping", market_id, market.end_time)
                return MarketResult(market_id, MarketAction.SKIPPED, detail="not ended")

        reading = self._feeds.fetch(rule.feed)
        logger.info(
            "  Feed %s: value=%s confidence=%d%s",
            rule.feed, reading.value, reading.confidence, "  (fallback)" if reading.fallback else "",
        )

        self._set_state(LoopState.DECIDING, market_id)
        resolution = decide(rule, reading)
        logger.info(
            "  Decision: %s (confidence %d%%)",
            resolution.outcome.label,
            resolution.confidence,
            extra={
                "market_id": market_id,
                "feed": rule.feed,
                "value": reading.value,
                "outcome": resolution.outcome.label,
                "confidence": resolution.confidence,
                "fallback": reading.fallback,
            },
        )

        if not passes_gate(resolution, self._threshold):
            self._set_state(LoopState.GATED, market_id)
            logger.info(
                "  Confidence too low (%d < %d), not submitting", resolution.confidence, self._threshold,
            )
            return MarketResult(market_id, MarketAction.GATED, resolution.outcome, resolution.confidence)

        self._set_state(LoopState.SUBMITTING, market_id)
        result = self._submitter.submit(market_id, resolution.outcome, resolution.confidence)
        return MarketResult(
            market_id,
            _STATUS_TO_ACTION[result.status],
            result.outcome,
            resolution.confidence,
            detail=result.error or (result.market_tx or ""),
        )

    # -- cycles --------------------------------------------------------------

    def run_cycle(self, cycle: int) -> CycleSummary:
        """Visit every configured market once, in order."""
        summary = CycleSummary(cycle=cycle, started_at=self._clock())
        start = time.monotonic()
        print_cycle_header(cycle)

        for i, market_id in enumerate(self._market_ids):
            if i > 0 and not self._wait(self._pacing):
                summary.interrupted = True
                break
            if self._stop.is_set():
                summary.interrupted = True
                break
            try:
                result = self.resolve_market(market_id)
            except Exception as e:
                logger.error("Unexpected error on market %d, continuing: %s", market_id, e, exc_info=True)
                result = MarketResult(market_id, MarketAction.FAILED, detail=str(e))
            summary.results.append(result)
            self.totals[result.action] += 1

        summary.elapsed_sec = time.monotonic() - start
        self.cycles_completed += 1
        print_cycle_summary(summary)
        return summary

    def run(self, max_cycles: int = 0, initial_markets: list[int] | None = None) -> int:
        """
        Run cycles until stop() or *max_cycles* (0 = unbounded).
        *initial_markets* are attempted once before the first cycle.
        Returns the number of cycles completed.
        """
        for market_id in initial_markets or []:
            if self._stop.is_set():
                break
            logger.info("Initial check for market %d", market_id)
            try:
                result = self.resolve_market(market_id)
                self.totals[result.action] += 1
            except Exception as e:
                logger.error("Unexpected error on initial market %d: %s", market_id, e, exc_info=True)

        cycle = 0
        while not self._stop.is_set():
            cycle += 1
            cycle_start = time.monotonic()
            self.run_cycle(cycle)

            if max_cycles and cycle >= max_cycles:
                logger.info("Reached %d cycle(s), stopping", max_cycles)
                break

            remaining = self._interval - (time.monotonic() - cycle_start)
            if remaining <= 0:
                logger.warning(
                    "Cycle %d took %.1fs, longer than the %.0fs interval; starting next cycle now",
                    cycle, time.monotonic() - cycle_start, self._interval,
                )
                continue
            logger.debug("Next cycle in %.1fs", remaining)
            self._wait(remaining)

        return self.cycles_completed
