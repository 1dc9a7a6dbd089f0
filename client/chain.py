"""
Contract client for the prediction market, the oracle resolver and the
settlement-currency token.

Every write is built, signed with the single resolver key, sent, and then
blocks on the receipt. Reverts, send errors and receipt timeouts surface as
ChainWriteFailed; a revert caused by the market already being resolved
surfaces as AlreadyResolved so callers can treat it as a no-op.
"""

from __future__ import annotations

import logging
from typing import Any

from eth_account import Account
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception

from config import ConfigurationMissing
from resolver.models import Market, Outcome

logger = logging.getLogger(__name__)

_RPC_TIMEOUT = 30.0
_GAS_HEADROOM = 1.2

# Revert reasons that mean "nothing left to do" rather than failure
_ALREADY_RESOLVED_MARKERS = (
    "already resolved",
    "alreadyresolved",
    "market resolved",
)


class ChainWriteFailed(Exception):
    """A write reverted, could not be sent, or was not confirmed in time."""
    pass


class AlreadyResolved(ChainWriteFailed):
    """The contract rejected the write because the market is already resolved."""
    pass


class ChainReadFailed(Exception):
    """A view call failed or returned an unexpected shape."""
    pass


PREDICTION_MARKET_ABI: list[dict[str, Any]] = [
    {
        "inputs": [],
        "name": "marketCounter",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"name": "_marketId", "type": "uint256"}],
        "name": "getMarket",
        "outputs": [
            {"name": "question", "type": "string"},
            {"name": "description", "type": "string"},
            {"name": "endTime", "type": "uint256"},
            {"name": "resolutionTime", "type": "uint256"},
            {"name": "state", "type": "uint8"},
            {"name": "totalYesAmount", "type": "uint256"},
            {"name": "totalNoAmount", "type": "uint256"},
            {"name": "resolved", "type": "bool"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "_marketId", "type": "uint256"},
            {"name": "_outcome", "type": "uint8"},
        ],
        "name": "resolveMarket",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "_marketId", "type": "uint256"},
            {"name": "_outcome", "type": "uint8"},
            {"name": "_amount", "type": "uint256"},
        ],
        "name": "placeBet",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "_marketId", "type": "uint256"},
            {"name": "_outcome", "type": "uint8"},
            {"name": "_betAmount", "type": "uint256"},
        ],
        "name": "calculatePotentialWinnings",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"name": "_marketId", "type": "uint256"}],
        "name": "claimWinnings",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

ORACLE_RESOLVER_ABI: list[dict[str, Any]] = [
    {
        "inputs": [
            {"name": "_marketId", "type": "uint256"},
            {"name": "_outcome", "type": "uint8"},
            {"name": "_confidence", "type": "uint256"},
        ],
        "name": "submitResolution",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

ERC20_ABI: list[dict[str, Any]] = [
    {
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "name": "approve",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [{"name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
]


def build_web3(rpc_url: str, timeout: float = _RPC_TIMEOUT) -> Web3:
    return Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))


def _is_already_resolved(error: Exception) -> bool:
    text = " ".join(str(part) for part in (getattr(error, "message", ""), error) if part).lower()
    return any(marker in text for marker in _ALREADY_RESOLVED_MARKERS)


def decode_market(market_id: int, raw: Any) -> Market:
    """Decode the getMarket tuple. Raises ChainReadFailed on an unexpected shape."""
    try:
        question, description, end_time, resolution_time, state, yes_amount, no_amount, resolved = raw
        return Market(
            id=market_id,
            question=str(question),
            description=str(description),
            end_time=int(end_time),
            resolution_time=int(resolution_time),
            state=int(state),
            total_yes_amount=int(yes_amount),
            total_no_amount=int(no_amount),
            resolved=bool(resolved),
        )
    except (TypeError, ValueError) as e:
        raise ChainReadFailed(f"getMarket({market_id}) returned unexpected data: {e}") from e


class ChainClient:
    """
    Thin wrapper over the three contracts. Read methods work without a key;
    write methods need the signing account.
    """

    def __init__(
        self,
        w3: Web3,
        market_address: str,
        oracle_address: str,
        token_address: str,
        account: Any = None,
        chain_id: int | None = None,
        gas_limit: int = 300_000,
        gas_price_multiplier: float = 1.2,
        receipt_timeout: float = 120.0,
    ):
        self._w3 = w3
        self._account = account
        self._chain_id = chain_id
        self._gas_limit = gas_limit
        self._gas_price_multiplier = gas_price_multiplier
        self._receipt_timeout = receipt_timeout

        self.market_address = Web3.to_checksum_address(market_address)
        self.oracle_address = Web3.to_checksum_address(oracle_address)
        self.token_address = Web3.to_checksum_address(token_address)
        self._market = w3.eth.contract(address=self.market_address, abi=PREDICTION_MARKET_ABI)
        self._oracle = w3.eth.contract(address=self.oracle_address, abi=ORACLE_RESOLVER_ABI)
        self._token = w3.eth.contract(address=self.token_address, abi=ERC20_ABI)

    @classmethod
    def from_config(cls, cfg, private_key: str | None = None) -> ChainClient:
        account = None
        if private_key:
            try:
                account = Account.from_key(private_key)
            except (ValueError, TypeError) as e:
                raise ConfigurationMissing(f"PRIVATE_KEY is not a usable private key: {e}") from None
        w3 = build_web3(cfg.rpc_url)
        try:
            return cls(
                w3,
                market_address=cfg.prediction_market_address,
                oracle_address=cfg.oracle_resolver_address,
                token_address=cfg.usdc_token_address,
                account=account,
                chain_id=cfg.chain_id,
                gas_limit=cfg.gas_limit,
                gas_price_multiplier=cfg.gas_price_multiplier,
                receipt_timeout=cfg.tx_receipt_timeout_sec,
            )
        except (ValueError, TypeError) as e:
            raise ConfigurationMissing(f"Invalid contract address in configuration: {e}") from None

    @property
    def address(self) -> str | None:
        return self._account.address if self._account is not None else None

    # -- reads ---------------------------------------------------------------

    def market_counter(self) -> int:
        try:
            return int(self._market.functions.marketCounter().call())
        except (Web3Exception, ValueError, OSError) as e:
            raise ChainReadFailed(f"marketCounter() failed: {e}") from e

    def get_market(self, market_id: int) -> Market:
        try:
            raw = self._market.functions.getMarket(market_id).call()
        except (Web3Exception, ValueError, OSError) as e:
            raise ChainReadFailed(f"getMarket({market_id}) failed: {e}") from e
        return decode_market(market_id, raw)

    def potential_winnings(self, market_id: int, outcome: Outcome, amount: int) -> int:
        try:
            return int(self._market.functions.calculatePotentialWinnings(market_id, int(outcome), amount).call())
        except (Web3Exception, ValueError, OSError) as e:
            raise ChainReadFailed(f"calculatePotentialWinnings({market_id}) failed: {e}") from e

    def token_balance(self, account: str | None = None) -> int:
        owner = account or self.address
        if owner is None:
            raise ChainReadFailed("balanceOf needs an account address")
        try:
            return int(self._token.functions.balanceOf(Web3.to_checksum_address(owner)).call())
        except (Web3Exception, ValueError, OSError) as e:
            raise ChainReadFailed(f"balanceOf({owner}) failed: {e}") from e

    # -- writes --------------------------------------------------------------

    def submit_resolution(self, market_id: int, outcome: Outcome, confidence: int) -> str:
        fn = self._oracle.functions.submitResolution(market_id, int(outcome), confidence)
        return self._send(fn, f"submitResolution({market_id}, {outcome.label}, {confidence})")

    def resolve_market(self, market_id: int, outcome: Outcome) -> str:
        fn = self._market.functions.resolveMarket(market_id, int(outcome))
        return self._send(fn, f"resolveMarket({market_id}, {outcome.label})")

    def approve(self, amount: int, spender: str | None = None) -> str:
        spender = Web3.to_checksum_address(spender or self.market_address)
        return self._send(self._token.functions.approve(spender, amount), f"approve({spender}, {amount})")

    def place_bet(self, market_id: int, outcome: Outcome, amount: int) -> str:
        fn = self._market.functions.placeBet(market_id, int(outcome), amount)
        return self._send(fn, f"placeBet({market_id}, {outcome.label}, {amount})")

    def claim_winnings(self, market_id: int) -> str:
        return self._send(self._market.functions.claimWinnings(market_id), f"claimWinnings({market_id})")

    def _send(self, fn: Any, label: str) -> str:
        """Build, sign, send and wait for one transaction. Returns the 0x tx hash."""
        if self._account is None:
            raise ChainWriteFailed(f"{label}: no signing key loaded")
        sender = self._account.address

        try:
            gas_estimate = fn.estimate_gas({"from": sender})
            gas = int(gas_estimate * _GAS_HEADROOM)
            if gas > self._gas_limit:
                raise ChainWriteFailed(f"{label}: gas estimate {gas_estimate} exceeds limit {self._gas_limit}")
            tx_params = {
                "from": sender,
                "nonce": self._w3.eth.get_transaction_count(sender, "pending"),
                "gas": gas,
                "gasPrice": int(self._w3.eth.gas_price * self._gas_price_multiplier),
            }
            if self._chain_id is not None:
                tx_params["chainId"] = self._chain_id
            tx = fn.build_transaction(tx_params)
            signed = self._account.sign_transaction(tx)
            tx_hash = self._w3.eth.send_raw_transaction(signed.raw_transaction)
        except ContractLogicError as e:
            if _is_already_resolved(e):
                raise AlreadyResolved(f"{label}: {e}") from e
            raise ChainWriteFailed(f"{label}: reverted: {e}") from e
        except (Web3Exception, ValueError, OSError) as e:
            raise ChainWriteFailed(f"{label}: {e}") from e

        tx_hex = Web3.to_hex(tx_hash)
        logger.debug("%s sent: %s", label, tx_hex)

        try:
            receipt = self._w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self._receipt_timeout)
        except TimeExhausted as e:
            raise ChainWriteFailed(
                f"{label}: not confirmed within {self._receipt_timeout:.0f}s (tx {tx_hex})"
            ) from e
        except (Web3Exception, ValueError, OSError) as e:
            raise ChainWriteFailed(f"{label}: receipt lookup failed (tx {tx_hex}): {e}") from e

        if receipt["status"] != 1:
            raise ChainWriteFailed(f"{label}: reverted in block {receipt['blockNumber']} (tx {tx_hex})")

        logger.debug("%s confirmed in block %s", label, receipt["blockNumber"])
        return tx_hex
