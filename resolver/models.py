"""
Data models for the resolver. Pure data, no behavior beyond small derived properties.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum


class Outcome(IntEnum):
    """Contract encoding: 0 = YES, 1 = NO."""
    YES = 0
    NO = 1

    @property
    def label(self) -> str:
        return self.name


class MarketState(IntEnum):
    OPEN = 0
    CLOSED = 1
    RESOLVED = 2


class SubmissionStatus(Enum):
    SUBMITTED = "submitted"
    ALREADY_RESOLVED = "already_resolved"
    FAILED = "failed"
    DRY_RUN = "dry_run"


class CommitStage(Enum):
    """Progress of the attest -> resolve sequence for one market."""
    PENDING = "pending"
    ATTESTED = "attested"
    RESOLVED = "resolved"


@dataclass(frozen=True)
class Market:
    """On-chain market record as returned by getMarket(id)."""
    id: int
    question: str
    description: str
    end_time: int  # unix seconds
    resolution_time: int
    state: int  # raw uint8; MarketState when known
    total_yes_amount: int  # smallest currency unit
    total_no_amount: int
    resolved: bool

    @property
    def total_amount(self) -> int:
        return self.total_yes_amount + self.total_no_amount

    @property
    def known_state(self) -> MarketState | None:
        try:
            return MarketState(self.state)
        except ValueError:
            return None

    def has_ended(self, now: float) -> bool:
        return now >= self.end_time


@dataclass(frozen=True)
class FeedReading:
    value: float | bool
    confidence: int  # 0..100, feed-specific heuristic
    fallback: bool = False  # substituted after a fetch/parse failure


@dataclass(frozen=True)
class ResolutionOutcome:
    market_id: int
    outcome: Outcome
    confidence: int


@dataclass(frozen=True)
class SubmissionResult:
    market_id: int
    outcome: Outcome
    status: SubmissionStatus
    oracle_tx: str | None = None
    market_tx: str | None = None
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.status != SubmissionStatus.FAILED


class MarketAction(Enum):
    """What the resolver did with one market in one cycle."""
    SUBMITTED = "submitted"
    ALREADY_RESOLVED = "already_resolved"
    GATED = "gated"
    FAILED = "failed"
    SKIPPED = "skipped"
    DRY_RUN = "dry_run"


@dataclass(frozen=True)
class MarketResult:
    market_id: int
    action: MarketAction
    outcome: Outcome | None = None
    confidence: int | None = None
    detail: str = ""


@dataclass
class CycleSummary:
    cycle: int
    started_at: float
    elapsed_sec: float = 0.0
    results: list[MarketResult] = field(default_factory=list)
    interrupted: bool = False

    def count(self, action: MarketAction) -> int:
        return sum(1 for r in self.results if r.action == action)
