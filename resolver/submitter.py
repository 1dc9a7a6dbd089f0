"""
Chain submitter: attest on the oracle contract, then resolve the market.

The two writes form a two-stage commit (attested -> resolved). The second is
never sent unless the first confirmed. A market left attested but unresolved
(crash, or a failed second write) is finished on the next attempt with the
journaled outcome, so the resolution always matches the attestation.

No retries happen here: a failure is returned to the loop and the next
scheduled cycle tries again.
"""

from __future__ import annotations

import logging
from typing import Protocol

from client.chain import AlreadyResolved, ChainWriteFailed
from resolver.models import CommitStage, Outcome, SubmissionResult, SubmissionStatus
from state.journal import CommitRecord, NullJournal

logger = logging.getLogger(__name__)


class ResolutionWriter(Protocol):
    """The two resolver writes. Each call returns only after the tx is confirmed."""

    def submit_resolution(self, market_id: int, outcome: Outcome, confidence: int) -> str: ...

    def resolve_market(self, market_id: int, outcome: Outcome) -> str: ...


class ChainSubmitter:
    def __init__(self, writer: ResolutionWriter, journal=None, dry_run: bool = False):
        self._writer = writer
        self._journal = journal if journal is not None else NullJournal()
        self._dry_run = dry_run

    def submit(self, market_id: int, outcome: Outcome, confidence: int) -> SubmissionResult:
        """Run (or finish) the attest -> resolve sequence for one market. Never raises ChainWriteFailed."""
        if self._dry_run:
            logger.info(
                "  [dry-run] would submitResolution(%d, %s, %d) then resolveMarket(%d, %s)",
                market_id, outcome.label, confidence, market_id, outcome.label,
            )
            return SubmissionResult(market_id=market_id, outcome=outcome, status=SubmissionStatus.DRY_RUN)

        record = self.unfinished(market_id)
        if record is not None:
            if record.outcome != outcome:
                logger.warning(
                    "  Market %d: attested %s earlier but now decides %s; finishing with the attested outcome",
                    market_id, record.outcome.label, outcome.label,
                )
            else:
                logger.info("  Market %d: attestation already confirmed (%s), resuming at resolution", market_id, record.oracle_tx)
            return self._resolve(market_id, record.outcome, record.oracle_tx)

        self._journal.mark_pending(market_id, outcome, confidence)
        logger.info("  Submitting oracle attestation for market %d: %s (confidence %d)...", market_id, outcome.label, confidence)
        try:
            oracle_tx = self._writer.submit_resolution(market_id, outcome, confidence)
        except AlreadyResolved as e:
            logger.info("  Market %d already resolved, attestation skipped: %s", market_id, e)
            self._journal.mark_resolved(market_id)
            return SubmissionResult(market_id=market_id, outcome=outcome, status=SubmissionStatus.ALREADY_RESOLVED)
        except ChainWriteFailed as e:
            logger.error("  Attestation failed for market %d, resolution not attempted: %s", market_id, e)
            return SubmissionResult(
                market_id=market_id, outcome=outcome, status=SubmissionStatus.FAILED, error=f"attestation: {e}",
            )

        self._journal.mark_attested(market_id, oracle_tx)
        logger.info("  Oracle attestation confirmed: %s", oracle_tx)
        return self._resolve(market_id, outcome, oracle_tx)

    def unfinished(self, market_id: int) -> CommitRecord | None:
        """Journal entry for a market attested but not yet resolved, if any."""
        record = self._journal.get(market_id)
        if record is not None and record.stage == CommitStage.ATTESTED:
            return record
        return None

    def resume(self, record: CommitRecord) -> SubmissionResult:
        """Finish a half-done commit with the outcome that was attested."""
        logger.info(
            "  Market %d was attested as %s (tx %s); finishing resolution",
            record.market_id, record.outcome.label, record.oracle_tx,
        )
        return self._resolve(record.market_id, record.outcome, record.oracle_tx)

    def _resolve(self, market_id: int, outcome: Outcome, oracle_tx: str | None) -> SubmissionResult:
        logger.info("  Resolving market %d as %s...", market_id, outcome.label)
        try:
            market_tx = self._writer.resolve_market(market_id, outcome)
        except AlreadyResolved as e:
            logger.info("  Market %d already resolved on-chain, nothing to do: %s", market_id, e)
            self._journal.mark_resolved(market_id)
            return SubmissionResult(
                market_id=market_id, outcome=outcome, status=SubmissionStatus.ALREADY_RESOLVED, oracle_tx=oracle_tx,
            )
        except ChainWriteFailed as e:
            logger.error("  Resolution failed for market %d (attested, will finish next cycle): %s", market_id, e)
            return SubmissionResult(
                market_id=market_id,
                outcome=outcome,
                status=SubmissionStatus.FAILED,
                oracle_tx=oracle_tx,
                error=f"resolution: {e}",
            )

        self._journal.mark_resolved(market_id, market_tx)
        logger.info("  Market %d resolved as %s  tx=%s", market_id, outcome.label, market_tx)
        return SubmissionResult(
            market_id=market_id,
            outcome=outcome,
            status=SubmissionStatus.SUBMITTED,
            oracle_tx=oracle_tx,
            market_tx=market_tx,
        )
