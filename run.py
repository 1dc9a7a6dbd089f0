#!/usr/bin/env python3
"""
Oracle resolver -- single entry point.

Resolver mode (default):
  1. Load config + rule table, fail fast on anything missing
  2. Every interval, visit each configured market in order:
     fetch feed -> decide -> confidence gate -> attest + resolve on-chain
  3. Repeat until signalled or --max-cycles reached

Client mode:
  --list-markets               print all markets with volume and odds
  --bet MARKET_ID {yes,no} AMT approve the token, then place the bet

Usage:
  python run.py                      # run the resolver (needs PRIVATE_KEY)
  python run.py --dry-run --once     # one cycle, decide only, no chain writes
  python run.py --list-markets
  python run.py --bet 2 yes 12.5
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys

from pydantic import ValidationError

from config import (
    Config,
    ConfigurationMissing,
    load_config,
    parse_market_ids,
    require_signing_key,
)
from client.chain import ChainClient, ChainReadFailed
from client.feeds import FeedRegistry
from monitor.display import BANNER, print_market_listing, print_shutdown, print_startup
from monitor.logger import setup_logging
from resolver.loop import ResolverLoop
from resolver.models import Outcome
from resolver.rules import ResolutionConfig, load_resolution_config, validate_resolution_config
from resolver.submitter import ChainSubmitter
from state.journal import create_journal, deployment_key
from view.betting import BetFailed, BetSelection, BettingClient
from view.markets import MarketViewCache

logger = logging.getLogger(__name__)

_EXIT_CONFIG = 2
_EXIT_CHAIN = 3
_EXIT_BET = 4


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Prediction market oracle resolver")
    parser.add_argument("--dry-run", action="store_true", help="Decide and log only; never send transactions")
    parser.add_argument("--max-cycles", type=int, default=None, help="Stop after N cycles (0 = unbounded)")
    parser.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    parser.add_argument("--rules", type=str, default=None, help="JSON rules file (overrides RULES_PATH)")
    parser.add_argument("--json-log", type=str, default=None, help="Path to JSON log file for machine-readable output")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--list-markets", action="store_true", help="Print the market listing and exit")
    mode.add_argument(
        "--bet",
        nargs=3,
        metavar=("MARKET_ID", "SIDE", "AMOUNT"),
        help="Place a bet: market id, yes|no, amount in currency units",
    )
    return parser.parse_args(argv)


def apply_cli_overrides(cfg: Config, args: argparse.Namespace) -> Config:
    """Returns a new Config with CLI flags applied (Config is immutable)."""
    updates = {}
    if args.dry_run:
        updates["dry_run"] = True
    if args.once:
        updates["max_cycles"] = 1
    elif args.max_cycles is not None:
        if args.max_cycles < 0:
            raise ConfigurationMissing("--max-cycles must be >= 0")
        updates["max_cycles"] = args.max_cycles
    if args.rules:
        updates["rules_path"] = args.rules
    if updates:
        return cfg.model_copy(update=updates)
    return cfg


def load_resolver_inputs(cfg: Config) -> tuple[list[int], list[int], ResolutionConfig]:
    """Market order, initial markets and rule table, validated together."""
    market_ids = parse_market_ids(cfg.market_ids)
    if not market_ids:
        raise ConfigurationMissing("MARKET_IDS is empty; nothing to resolve")
    initial_markets = parse_market_ids(cfg.initial_markets)
    resolution = load_resolution_config(cfg.rules_path or None)
    validate_resolution_config(resolution, market_ids + initial_markets)
    return market_ids, initial_markets, resolution


def build_resolver(cfg: Config, chain: ChainClient, resolution: ResolutionConfig, market_ids: list[int], journal) -> ResolverLoop:
    feeds = FeedRegistry.from_specs(dict(resolution.feeds), timeout=cfg.feed_timeout_sec)
    submitter = ChainSubmitter(chain, journal=journal, dry_run=cfg.dry_run)
    return ResolverLoop(
        feeds=feeds,
        rules=resolution.rules,
        submitter=submitter,
        market_ids=market_ids,
        reader=chain,
        confidence_threshold=cfg.confidence_threshold,
        poll_interval_sec=cfg.poll_interval_sec,
        market_pacing_sec=cfg.market_pacing_sec,
        require_market_ended=cfg.require_market_ended,
    )


def install_signal_handlers(loop: ResolverLoop) -> None:
    """SIGINT/SIGTERM request a graceful stop; a second signal is not special-cased."""

    def handle_signal(signum, frame):
        logger.info("Signal %d received", signum)
        loop.stop()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)


def run_resolver(cfg: Config) -> None:
    market_ids, initial_markets, resolution = load_resolver_inputs(cfg)
    key = None if cfg.dry_run else require_signing_key(cfg)
    chain = ChainClient.from_config(cfg, private_key=key)

    print_startup(cfg, market_ids, resolution.rules, chain.address)

    journal = create_journal(
        enabled=cfg.journal_enabled and not cfg.dry_run,
        db_path=cfg.journal_db,
        deployment=deployment_key(cfg.chain_id, cfg.prediction_market_address, cfg.oracle_resolver_address),
    )
    try:
        for record in journal.unfinished():
            logger.warning(
                "Market %d was attested as %s (tx %s) but not resolved; will finish on its next visit",
                record.market_id, record.outcome.label, record.oracle_tx,
            )

        loop = build_resolver(cfg, chain, resolution, market_ids, journal)
        install_signal_handlers(loop)
        cycles = loop.run(max_cycles=cfg.max_cycles, initial_markets=initial_markets)
        print_shutdown(cycles, dict(loop.totals))
    finally:
        journal.close()


def list_markets_command(cfg: Config) -> None:
    chain = ChainClient.from_config(cfg)
    cache = MarketViewCache(chain, decimals=cfg.currency_decimals, ttl_sec=cfg.market_cache_ttl_sec)
    print_market_listing(cache.get())


def bet_command(cfg: Config, raw: list[str]) -> None:
    market_raw, side_raw, amount = raw
    try:
        market_id = int(market_raw)
    except ValueError:
        raise BetFailed(f"Market id must be an integer, got {market_raw!r}") from None
    side = side_raw.strip().lower()
    if side not in ("yes", "no"):
        raise BetFailed(f"Side must be 'yes' or 'no', got {side_raw!r}")
    selection = BetSelection(market_id=market_id, outcome=Outcome.YES if side == "yes" else Outcome.NO, amount=amount)

    chain = ChainClient.from_config(cfg, private_key=require_signing_key(cfg))
    cache = MarketViewCache(chain, decimals=cfg.currency_decimals, ttl_sec=cfg.market_cache_ttl_sec)
    client = BettingClient(chain, cache=cache, decimals=cfg.currency_decimals)

    logger.info("Balance: %s", client.balance())
    logger.info("Potential winnings: %s", client.potential_winnings(selection))
    receipt = client.place_bet(selection)
    logger.info(
        "Bet placed on market %d (%s): approve %s, bet %s",
        receipt.market_id, receipt.outcome.label, receipt.approve_tx, receipt.bet_tx,
    )
    view = cache.find(selection.market_id)
    if view is not None:
        print_market_listing([view])


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    try:
        cfg = apply_cli_overrides(load_config(), args)
    except (ConfigurationMissing, ValidationError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(_EXIT_CONFIG)

    log_file_path = setup_logging(cfg.log_level, json_log_file=args.json_log)
    logger.debug("Log file: %s", log_file_path)

    try:
        if args.list_markets:
            list_markets_command(cfg)
        elif args.bet:
            bet_command(cfg, args.bet)
        else:
            logger.info(BANNER.strip("\n"))
            run_resolver(cfg)
    except ConfigurationMissing as e:
        logger.error("Configuration error: %s", e)
        sys.exit(_EXIT_CONFIG)
    except ChainReadFailed as e:
        logger.error("Chain read failed: %s", e)
        sys.exit(_EXIT_CHAIN)
    except BetFailed as e:
        logger.error("%s", e)
        sys.exit(_EXIT_BET)


if __name__ == "__main__":
    main()
