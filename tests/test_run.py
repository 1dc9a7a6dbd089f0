"""
Unit tests for run.py helper behavior.
"""

from argparse import Namespace
from unittest.mock import MagicMock, patch

import pytest

from client.chain import ChainReadFailed
from config import Config, ConfigurationMissing
from resolver.models import Outcome
from view.betting import BetFailed, BetReceipt
import run


def _args(**overrides) -> Namespace:
    defaults = dict(dry_run=False, once=False, max_cycles=None, rules=None, json_log=None, list_markets=False, bet=None)
    defaults.update(overrides)
    return Namespace(**defaults)


def _cfg(**overrides) -> Config:
    return Config(_env_file=None, **overrides)


@pytest.fixture(autouse=True)
def _no_env_key(monkeypatch):
    monkeypatch.delenv("PRIVATE_KEY", raising=False)


class TestParseArgs:
    def test_defaults(self):
        args = run.parse_args([])
        assert args.dry_run is False
        assert args.bet is None

    def test_bet(self):
        assert run.parse_args(["--bet", "2", "yes", "12.5"]).bet == ["2", "yes", "12.5"]

    def test_modes_exclusive(self):
        with pytest.raises(SystemExit):
            run.parse_args(["--list-markets", "--bet", "2", "yes", "1"])


class TestApplyCliOverrides:
    def test_no_flags_returns_same(self):
        cfg = _cfg()
        assert run.apply_cli_overrides(cfg, _args()) is cfg

    def test_once(self):
        cfg = run.apply_cli_overrides(_cfg(), _args(once=True, dry_run=True, rules="rules.json"))
        assert cfg.max_cycles == 1
        assert cfg.dry_run is True
        assert cfg.rules_path == "rules.json"

    def test_negative_cycles(self):
        with pytest.raises(ConfigurationMissing):
            run.apply_cli_overrides(_cfg(), _args(max_cycles=-1))


class TestLoadResolverInputs:
    def test_defaults(self):
        market_ids, initial, resolution = run.load_resolver_inputs(_cfg(initial_markets="2"))
        assert market_ids == [0, 1, 2]
        assert initial == [2]
        assert list(resolution.rules) == [0, 1, 2]

    def test_market_without_rule(self):
        with pytest.raises(ConfigurationMissing, match="market 4"):
            run.load_resolver_inputs(_cfg(market_ids="0,4"))

    def test_empty_market_ids(self):
        with pytest.raises(ConfigurationMissing, match="empty"):
            run.load_resolver_inputs(_cfg(market_ids=" "))


class TestRunResolver:
    def test_missing_key_refuses_to_start(self):
        with patch("run.ChainClient") as mock_chain:
            with pytest.raises(ConfigurationMissing):
                run.run_resolver(_cfg())
        mock_chain.from_config.assert_not_called()

    @patch("run.print_shutdown")
    @patch("run.print_startup")
    @patch("run.install_signal_handlers")
    @patch("run.build_resolver")
    @patch("run.ChainClient")
    def test_dry_run_needs_no_key(self, mock_chain, mock_build, mock_signals, mock_startup, mock_shutdown):
        loop = MagicMock()
        loop.run.return_value = 1
        mock_build.return_value = loop

        run.run_resolver(_cfg(dry_run=True, max_cycles=1, initial_markets="2"))

        mock_chain.from_config.assert_called_once()
        assert mock_chain.from_config.call_args.kwargs["private_key"] is None
        loop.run.assert_called_once_with(max_cycles=1, initial_markets=[2])
        mock_shutdown.assert_called_once()

    @patch("run.print_shutdown")
    @patch("run.print_startup")
    @patch("run.install_signal_handlers")
    @patch("run.build_resolver")
    @patch("run.create_journal")
    @patch("run.ChainClient")
    def test_journal_scoped_to_deployment(self, mock_chain, mock_journal, mock_build, mock_signals, mock_startup, mock_shutdown):
        mock_journal.return_value.unfinished.return_value = []
        mock_build.return_value.run.return_value = 1
        cfg = _cfg(private_key="0xabc", chain_id=1, max_cycles=1)

        run.run_resolver(cfg)

        deployment = mock_journal.call_args.kwargs["deployment"]
        assert deployment == f"1:{cfg.prediction_market_address.lower()}:{cfg.oracle_resolver_address.lower()}"


class TestBetCommand:
    def test_bad_market_id(self):
        with pytest.raises(BetFailed, match="integer"):
            run.bet_command(_cfg(private_key="0xabc"), ["two", "yes", "1"])

    def test_bad_side(self):
        with pytest.raises(BetFailed, match="yes"):
            run.bet_command(_cfg(private_key="0xabc"), ["2", "maybe", "1"])

    @patch("run.print_market_listing")
    @patch("run.BettingClient")
    @patch("run.MarketViewCache")
    @patch("run.ChainClient")
    def test_places_bet(self, mock_chain, mock_cache, mock_client, mock_listing):
        client = mock_client.return_value
        client.place_bet.return_value = BetReceipt(2, Outcome.NO, 5_000_000, "0xapprove", "0xbet")
        run.bet_command(_cfg(private_key="0xabc"), ["2", "NO", "5"])
        selection = client.place_bet.call_args[0][0]
        assert selection.market_id == 2
        assert selection.outcome == Outcome.NO
        assert selection.amount == "5"


class TestMain:
    @patch("run.setup_logging")
    @patch("run.load_config")
    def test_missing_key_exits_2(self, mock_load, mock_logging):
        mock_load.return_value = _cfg()
        with pytest.raises(SystemExit) as exc:
            run.main([])
        assert exc.value.code == 2

    @patch("run.setup_logging")
    @patch("run.load_config")
    def test_invalid_config_exits_2(self, mock_load, mock_logging):
        mock_load.side_effect = ConfigurationMissing("bad")
        with pytest.raises(SystemExit) as exc:
            run.main([])
        assert exc.value.code == 2
        mock_logging.assert_not_called()

    @patch("run.list_markets_command")
    @patch("run.setup_logging")
    @patch("run.load_config")
    def test_chain_read_failure_exits_3(self, mock_load, mock_logging, mock_list):
        mock_load.return_value = _cfg()
        mock_list.side_effect = ChainReadFailed("rpc down")
        with pytest.raises(SystemExit) as exc:
            run.main(["--list-markets"])
        assert exc.value.code == 3

    @patch("run.bet_command")
    @patch("run.setup_logging")
    @patch("run.load_config")
    def test_bet_failure_exits_4(self, mock_load, mock_logging, mock_bet):
        mock_load.return_value = _cfg()
        mock_bet.side_effect = BetFailed("Betting failed: reverted")
        with pytest.raises(SystemExit) as exc:
            run.main(["--bet", "2", "yes", "1"])
        assert exc.value.code == 4

    @patch("run.setup_logging")
    @patch("run.load_config")
    def test_bad_contract_address_exits_2(self, mock_load, mock_logging):
        mock_load.return_value = _cfg(prediction_market_address="0xnothex")
        with pytest.raises(SystemExit) as exc:
            run.main(["--list-markets"])
        assert exc.value.code == 2
