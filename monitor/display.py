"""
Clean, scannable console output for the resolver.

Pure formatting functions that emit structured log lines using box-drawing
characters. No side effects beyond logging. All data arrives via arguments.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone

from config import Config
from resolver.models import CycleSummary, MarketAction
from resolver.rules import RuleTable
from view.markets import MarketView

logger = logging.getLogger(__name__)

# Box-drawing characters
_TOP = "\u250c"  # ┌
_MID = "\u2502"  # │
_BOT = "\u2514"  # └
_DASH = "\u2500"  # ─
_VERT_SEP = "\u2502"  # │ (inline separator)

_MAX_QUESTION_LEN = 50

BANNER = r"""
   ____                 __        ____                 __
  / __ \_________ ______/ /__     / __ \___  _________  / /   _____  _____
 / / / / ___/ __ `/ ___/ / _ \   / /_/ / _ \/ ___/ __ \/ / | / / _ \/ ___/
/ /_/ / /  / /_/ / /__/ /  __/  / _, _/  __(__  ) /_/ / /| |/ /  __/ /
\____/_/   \__,_/\___/_/\___/  /_/ |_|\___/____/\____/_/ |___/\___/_/
"""


def _truncate(text: str, length: int = _MAX_QUESTION_LEN) -> str:
    """Truncate text to *length* chars, appending ellipsis if trimmed."""
    if len(text) <= length:
        return text
    return text[: length - 1] + "\u2026"


def _format_ts(ts: int) -> str:
    if ts <= 0:
        return "-"
    return datetime.fromtimestamp(ts, timezone.utc).strftime("%Y-%m-%d %H:%M UTC")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def print_startup(cfg: Config, market_ids: list[int], rules: RuleTable, signer: str | None) -> None:
    """Compact config block emitted once after the banner."""
    mode = "DRY-RUN (no chain writes)" if cfg.dry_run else "LIVE"
    logger.info("  Mode: %-26s RPC: %s", mode, cfg.rpc_url)
    logger.info("  Signer: %s", signer or "-")
    logger.info(
        "  Interval: %.0fs  Pacing: %.1fs  Threshold: %d  Cycles: %s",
        cfg.poll_interval_sec,
        cfg.market_pacing_sec,
        cfg.confidence_threshold,
        cfg.max_cycles or "unbounded",
    )
    logger.info("  Markets:")
    for market_id in market_ids:
        rule = rules[market_id]
        logger.info("    %3d  %-10s %s", market_id, rule.feed, rule.description or "-")


def print_cycle_header(cycle: int) -> None:
    """Emit a horizontal divider with cycle number and wall-clock time."""
    ts = time.strftime("%H:%M:%S")
    label = f" Cycle {cycle} "
    left_dashes = _DASH * 2
    right_pad = 60 - len(left_dashes) - len(label) - len(ts) - 3
    if right_pad < 2:
        right_pad = 2
    line = f"{left_dashes}{label}{_DASH * right_pad} {ts} {_DASH * 2}"
    logger.info(line)


def print_cycle_summary(summary: CycleSummary) -> None:
    """One boxed line per cycle with per-action counts."""
    counts = [
        ("resolved", summary.count(MarketAction.SUBMITTED)),
        ("already", summary.count(MarketAction.ALREADY_RESOLVED)),
        ("gated", summary.count(MarketAction.GATED)),
        ("failed", summary.count(MarketAction.FAILED)),
        ("skipped", summary.count(MarketAction.SKIPPED)),
    ]
    dry = summary.count(MarketAction.DRY_RUN)
    if dry:
        counts.append(("dry-run", dry))
    parts = f" {_VERT_SEP} ".join(f"{label} {n}" for label, n in counts)
    suffix = "  (interrupted)" if summary.interrupted else ""
    logger.info("  %s Cycle %d: %s  in %.1fs%s", _BOT, summary.cycle, parts, summary.elapsed_sec, suffix)


def print_market_listing(views: list[MarketView]) -> None:
    """Table of markets with volume, odds and status."""
    if not views:
        logger.info("  %s No markets found", _TOP)
        return

    n = len(views)
    logger.info("  %s %d market%s", _TOP, n, "" if n == 1 else "s")
    logger.info(
        "  %s  %-3s %-50s %6s %6s %12s  %-20s %s",
        _MID, "#", "Question", "YES", "NO", "Volume", "Ends", "Status",
    )
    for view in views:
        logger.info(
            "  %s  %-3d %-50s %6.2f %6.2f %12s  %-20s %s",
            _MID,
            view.id,
            _truncate(view.question),
            view.yes_odds,
            view.no_odds,
            f"${view.total_volume:,.2f}",
            _format_ts(view.end_time),
            view.status_label,
        )
    logger.info("  %s", _BOT)


def print_shutdown(cycles: int, totals: dict[MarketAction, int]) -> None:
    logger.info(
        "  %s Session: %d cycles %s %d resolved %s %d gated %s %d failed",
        _BOT,
        cycles,
        _VERT_SEP,
        totals.get(MarketAction.SUBMITTED, 0),
        _VERT_SEP,
        totals.get(MarketAction.GATED, 0),
        _VERT_SEP,
        totals.get(MarketAction.FAILED, 0),
    )
