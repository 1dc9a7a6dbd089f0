"""
Unit tests for client/chain.py -- contract reads and the send/confirm path.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from eth_account import Account
from web3.exceptions import ContractLogicError, TimeExhausted

from client.chain import (
    AlreadyResolved,
    ChainClient,
    ChainReadFailed,
    ChainWriteFailed,
    decode_market,
)
from config import Config, ConfigurationMissing
from resolver.models import Outcome

MARKET = "0x759449068AD81E04FD223fe0F1Da790F17426204"
ORACLE = "0xfE1757e4E3C6050d592b54A3060ED3A47eaCA898"
TOKEN = "0x75faf114eafb1BDbe2F0316DF893fd58CE46AA4d"
SENDER = "0x" + "11" * 20
TX_HASH = b"\x12" * 32

# Well-known test key, never funded anywhere that matters
TEST_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"


def _raw_market(resolved=False, yes=3_000_000, no=1_000_000):
    return ("Will BTC hit $100k?", "Coindesk close", 1_700_000_000, 1_700_086_400, 0, yes, no, resolved)


@pytest.fixture
def w3():
    w3 = MagicMock()
    w3.eth.get_transaction_count.return_value = 7
    w3.eth.gas_price = 100
    w3.eth.send_raw_transaction.return_value = TX_HASH
    w3.eth.wait_for_transaction_receipt.return_value = {"status": 1, "blockNumber": 42}
    return w3


@pytest.fixture
def contract(w3):
    return w3.eth.contract.return_value


@pytest.fixture
def account():
    account = MagicMock()
    account.address = SENDER
    account.sign_transaction.return_value.raw_transaction = b"signed"
    return account


@pytest.fixture
def client(w3, account):
    return ChainClient(w3, MARKET, ORACLE, TOKEN, account=account, chain_id=421614, gas_limit=300_000)


class TestDecodeMarket:
    def test_tuple(self):
        market = decode_market(3, _raw_market())
        assert market.id == 3
        assert market.question == "Will BTC hit $100k?"
        assert market.total_yes_amount == 3_000_000
        assert market.total_amount == 4_000_000
        assert market.resolved is False

    def test_short_tuple(self):
        with pytest.raises(ChainReadFailed):
            decode_market(0, ("q", "d", 1))


class TestReads:
    def test_get_market(self, client, contract):
        contract.functions.getMarket.return_value.call.return_value = _raw_market(resolved=True)
        market = client.get_market(1)
        contract.functions.getMarket.assert_called_once_with(1)
        assert market.resolved is True

    def test_get_market_failure(self, client, contract):
        contract.functions.getMarket.return_value.call.side_effect = OSError("connection refused")
        with pytest.raises(ChainReadFailed, match="getMarket"):
            client.get_market(1)

    def test_market_counter(self, client, contract):
        contract.functions.marketCounter.return_value.call.return_value = 3
        assert client.market_counter() == 3

    def test_balance_without_account(self, w3):
        reader = ChainClient(w3, MARKET, ORACLE, TOKEN)
        assert reader.address is None
        with pytest.raises(ChainReadFailed):
            reader.token_balance()

    def test_potential_winnings(self, client, contract):
        contract.functions.calculatePotentialWinnings.return_value.call.return_value = 1_500_000
        assert client.potential_winnings(2, Outcome.NO, 1_000_000) == 1_500_000
        contract.functions.calculatePotentialWinnings.assert_called_once_with(2, 1, 1_000_000)


class TestSend:
    def test_success(self, client, contract, w3, account):
        fn = contract.functions.submitResolution.return_value
        fn.estimate_gas.return_value = 100_000

        tx = client.submit_resolution(2, Outcome.YES, 92)

        assert tx == "0x" + "12" * 32
        contract.functions.submitResolution.assert_called_once_with(2, 0, 92)
        params = fn.build_transaction.call_args[0][0]
        assert params["from"] == SENDER
        assert params["nonce"] == 7
        assert params["gas"] == 120_000
        assert params["gasPrice"] == 120
        assert params["chainId"] == 421614
        account.sign_transaction.assert_called_once()
        w3.eth.send_raw_transaction.assert_called_once_with(b"signed")
        w3.eth.wait_for_transaction_receipt.assert_called_once_with(TX_HASH, timeout=120.0)

    def test_no_account(self, w3, contract):
        reader = ChainClient(w3, MARKET, ORACLE, TOKEN)
        with pytest.raises(ChainWriteFailed, match="no signing key"):
            reader.resolve_market(0, Outcome.NO)
        w3.eth.send_raw_transaction.assert_not_called()

    def test_gas_over_limit(self, client, contract, w3):
        contract.functions.resolveMarket.return_value.estimate_gas.return_value = 300_000
        with pytest.raises(ChainWriteFailed, match="exceeds limit"):
            client.resolve_market(0, Outcome.NO)
        w3.eth.send_raw_transaction.assert_not_called()

    def test_revert_already_resolved(self, client, contract):
        contract.functions.resolveMarket.return_value.estimate_gas.side_effect = ContractLogicError(
            "execution reverted: Market already resolved"
        )
        with pytest.raises(AlreadyResolved):
            client.resolve_market(0, Outcome.NO)

    def test_other_revert(self, client, contract):
        contract.functions.resolveMarket.return_value.estimate_gas.side_effect = ContractLogicError(
            "execution reverted: Only oracle"
        )
        with pytest.raises(ChainWriteFailed) as exc:
            client.resolve_market(0, Outcome.NO)
        assert not isinstance(exc.value, AlreadyResolved)
        assert "reverted" in str(exc.value)

    def test_send_error(self, client, contract, w3):
        contract.functions.placeBet.return_value.estimate_gas.return_value = 50_000
        w3.eth.send_raw_transaction.side_effect = ValueError("nonce too low")
        with pytest.raises(ChainWriteFailed, match="nonce too low"):
            client.place_bet(1, Outcome.YES, 5_000_000)

    def test_receipt_timeout(self, client, contract, w3):
        contract.functions.resolveMarket.return_value.estimate_gas.return_value = 50_000
        w3.eth.wait_for_transaction_receipt.side_effect = TimeExhausted("timed out")
        with pytest.raises(ChainWriteFailed, match="not confirmed"):
            client.resolve_market(0, Outcome.NO)

    def test_reverted_receipt(self, client, contract, w3):
        contract.functions.claimWinnings.return_value.estimate_gas.return_value = 50_000
        w3.eth.wait_for_transaction_receipt.return_value = {"status": 0, "blockNumber": 43}
        with pytest.raises(ChainWriteFailed, match="block 43"):
            client.claim_winnings(1)

    def test_approve_defaults_to_market(self, client, contract):
        contract.functions.approve.return_value.estimate_gas.return_value = 40_000
        client.approve(5_000_000)
        contract.functions.approve.assert_called_once_with(MARKET, 5_000_000)


class TestFromConfig:
    def test_read_only(self):
        chain = ChainClient.from_config(Config(_env_file=None))
        assert chain.address is None
        assert chain.market_address == MARKET

    def test_with_key(self):
        chain = ChainClient.from_config(Config(_env_file=None), private_key=TEST_KEY)
        assert chain.address.startswith("0x")
        assert len(chain.address) == 42

    def test_bad_key(self):
        with pytest.raises(ConfigurationMissing, match="PRIVATE_KEY"):
            ChainClient.from_config(Config(_env_file=None), private_key="0x1234")

    @pytest.mark.parametrize("field", ["prediction_market_address", "oracle_resolver_address", "usdc_token_address"])
    @pytest.mark.parametrize("bad", ["0xnothex", "0x1234"])
    def test_bad_contract_address(self, field, bad):
        with pytest.raises(ConfigurationMissing, match="contract address"):
            ChainClient.from_config(Config(_env_file=None, **{field: bad}))


class TestSignedTransaction:
    def test_signed_transaction_exposes_raw_bytes(self):
        signed = Account.from_key(TEST_KEY).sign_transaction({
            "to": SENDER,
            "value": 0,
            "gas": 21000,
            "gasPrice": 1,
            "nonce": 0,
            "chainId": 421614,
        })
        assert isinstance(signed.raw_transaction, bytes)
        assert len(signed.raw_transaction) > 0
