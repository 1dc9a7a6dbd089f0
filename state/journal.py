"""
Resolution journal. Records each market's attest -> resolve commit stage in
SQLite so a crash between the two writes is visible after restart and the
resolution can be finished with the outcome that was actually attested.

Rows are scoped to one deployment (chain id, market contract, oracle
contract). A journal file reused after a redeploy never resumes a commit
that was attested on another deployment.

The contract's `resolved` flag stays the source of truth; the journal is
advisory. Deleting the database is always safe, and a SQLite error is logged
and swallowed so it can never stop the second write from being sent.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from dataclasses import dataclass
from pathlib import Path

from resolver.models import CommitStage, Outcome

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS market_commit (
    deployment TEXT NOT NULL,
    market_id INTEGER NOT NULL,
    stage TEXT NOT NULL,
    outcome INTEGER NOT NULL,
    confidence INTEGER NOT NULL,
    oracle_tx TEXT,
    market_tx TEXT,
    updated_at REAL NOT NULL,
    PRIMARY KEY (deployment, market_id)
);
"""

DEFAULT_DB_PATH = Path("resolver_state.db")


def deployment_key(chain_id: int, market_address: str, oracle_address: str) -> str:
    """Identity of the contracts a commit was made against, e.g. '421614:0xabc..:0xdef..'."""
    return f"{chain_id}:{market_address.lower()}:{oracle_address.lower()}"


@dataclass(frozen=True)
class CommitRecord:
    market_id: int
    stage: CommitStage
    outcome: Outcome
    confidence: int
    oracle_tx: str | None
    market_tx: str | None
    updated_at: float


class ResolutionJournal:
    """
    Single-writer SQLite journal. Each stage change is one atomic statement.

    Usage:
        journal = ResolutionJournal("resolver_state.db", deployment="421614:0x7594...:0xfe17...")
        journal.mark_pending(3, Outcome.YES, 92)
        journal.mark_attested(3, "0xabc...")
        journal.mark_resolved(3, "0xdef...")
    """

    def __init__(self, db_path: str | Path = DEFAULT_DB_PATH, deployment: str = "") -> None:
        self._db_path = str(db_path)
        self._deployment = deployment
        self._lock = threading.Lock()
        self._conn: sqlite3.Connection | None = None
        self._init_db()

    @property
    def deployment(self) -> str:
        return self._deployment

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA busy_timeout=5000")
        return self._conn

    def _init_db(self) -> None:
        conn = self._get_conn()
        conn.executescript(_SCHEMA)
        conn.commit()

    def get(self, market_id: int) -> CommitRecord | None:
        try:
            with self._lock:
                row = self._get_conn().execute(
                    "SELECT market_id, stage, outcome, confidence, oracle_tx, market_tx, updated_at "
                    "FROM market_commit WHERE deployment = ? AND market_id = ?",
                    (self._deployment, market_id),
                ).fetchone()
        except sqlite3.Error as e:
            logger.warning("Journal read failed for market %d, treating as no entry: %s", market_id, e)
            return None
        if row is None:
            return None
        try:
            return CommitRecord(
                market_id=row[0],
                stage=CommitStage(row[1]),
                outcome=Outcome(row[2]),
                confidence=row[3],
                oracle_tx=row[4],
                market_tx=row[5],
                updated_at=row[6],
            )
        except ValueError as e:
            logger.warning("Corrupt journal row for market %d, ignoring: %s", market_id, e)
            return None

    def mark_pending(self, market_id: int, outcome: Outcome, confidence: int) -> None:
        try:
            with self._lock:
                conn = self._get_conn()
                conn.execute(
                    "INSERT OR REPLACE INTO market_commit "
                    "(deployment, market_id, stage, outcome, confidence, oracle_tx, market_tx, updated_at) "
                    "VALUES (?, ?, ?, ?, ?, NULL, NULL, ?)",
                    (self._deployment, market_id, CommitStage.PENDING.value, int(outcome), confidence, time.time()),
                )
                conn.commit()
        except sqlite3.Error as e:
            logger.warning("Journal write failed for market %d (pending), continuing: %s", market_id, e)

    def mark_attested(self, market_id: int, oracle_tx: str | None) -> None:
        self._set_stage(market_id, CommitStage.ATTESTED, "oracle_tx", oracle_tx)

    def mark_resolved(self, market_id: int, market_tx: str | None = None) -> None:
        self._set_stage(market_id, CommitStage.RESOLVED, "market_tx", market_tx)

    def _set_stage(self, market_id: int, stage: CommitStage, tx_column: str, tx_hash: str | None) -> None:
        try:
            with self._lock:
                conn = self._get_conn()
                cur = conn.execute(
                    f"UPDATE market_commit SET stage = ?, {tx_column} = ?, updated_at = ? "
                    "WHERE deployment = ? AND market_id = ?",
                    (stage.value, tx_hash, time.time(), self._deployment, market_id),
                )
                conn.commit()
        except sqlite3.Error as e:
            logger.warning(
                "Journal write failed for market %d (%s), continuing: %s", market_id, stage.value, e,
            )
            return
        if cur.rowcount == 0:
            logger.warning("Journal has no pending entry for market %d (stage %s)", market_id, stage.value)
        else:
            logger.debug("Journal: market %d -> %s", market_id, stage.value)

    def unfinished(self) -> list[CommitRecord]:
        """Markets of this deployment attested but not yet resolved, oldest first."""
        try:
            with self._lock:
                rows = self._get_conn().execute(
                    "SELECT market_id FROM market_commit WHERE deployment = ? AND stage = ? ORDER BY updated_at",
                    (self._deployment, CommitStage.ATTESTED.value),
                ).fetchall()
        except sqlite3.Error as e:
            logger.warning("Journal read failed, no unfinished commits reported: %s", e)
            return []
        records = [self.get(r[0]) for r in rows]
        return [r for r in records if r is not None]

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None


class NullJournal:
    """Zero-overhead stand-in when the journal is disabled."""

    def get(self, market_id: int) -> CommitRecord | None:
        return None

    def mark_pending(self, market_id: int, outcome: Outcome, confidence: int) -> None:
        pass

    def mark_attested(self, market_id: int, oracle_tx: str | None) -> None:
        pass

    def mark_resolved(self, market_id: int, market_tx: str | None = None) -> None:
        pass

    def unfinished(self) -> list[CommitRecord]:
        return []

    def close(self) -> None:
        pass


def create_journal(
    enabled: bool = True,
    db_path: str | Path = DEFAULT_DB_PATH,
    deployment: str = "",
) -> ResolutionJournal | NullJournal:
    """Factory: returns the SQLite journal scoped to *deployment*, or a no-op."""
    if not enabled:
        return NullJournal()
    return ResolutionJournal(db_path, deployment=deployment)
