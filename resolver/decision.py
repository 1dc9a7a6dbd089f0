"""
Resolution decision. Pure functions: no I/O, no clock, no randomness.
"""

from __future__ import annotations

from resolver.models import FeedReading, Outcome, ResolutionOutcome
from resolver.rules import ConditionRule, ThresholdRule


def decide(rule: ThresholdRule | ConditionRule, reading: FeedReading) -> ResolutionOutcome:
    """Predicate true -> YES (0), false -> NO (1). Confidence passes through unchanged."""
    outcome = Outcome.YES if rule.evaluate(reading.value) else Outcome.NO
    return ResolutionOutcome(market_id=rule.market_id, outcome=outcome, confidence=reading.confidence)


def passes_gate(resolution: ResolutionOutcome, threshold: int) -> bool:
    """Submission gate: confidence at or above the threshold submits."""
    return resolution.confidence >= threshold
