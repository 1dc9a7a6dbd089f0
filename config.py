"""
Configuration loaded from environment variables. Fail-fast on missing required values.
"""

from pydantic_settings import BaseSettings
from pydantic import Field


class ConfigurationMissing(Exception):
    """Raised when a value required to start the resolver is absent or unusable."""
    pass


class Config(BaseSettings):
    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "frozen": True, "extra": "ignore"}

    # Signing key for resolver writes (required unless dry-run or read-only commands)
    private_key: str = Field(default="", description="Resolver wallet private key (hex)")

    # Chain
    rpc_url: str = "https://sepolia-rollup.arbitrum.io/rpc"
    chain_id: int = 421614  # Arbitrum Sepolia
    prediction_market_address: str = "0x759449068AD81E04FD223fe0F1Da790F17426204"
    oracle_resolver_address: str = "0xfE1757e4E3C6050d592b54A3060ED3A47eaCA898"
    usdc_token_address: str = "0x75faf114eafb1BDbe2F0316DF893fd58CE46AA4d"
    currency_decimals: int = Field(default=6, ge=0, le=36)

    # Resolver schedule
    poll_interval_sec: float = Field(default=30.0, gt=0)
    # Delay between markets inside one cycle (feed rate limits, nonce ordering)
    market_pacing_sec: float = Field(default=2.0, ge=0)
    # Stop after N cycles (0 = run until signalled)
    max_cycles: int = Field(default=0, ge=0)
    # Comma-separated, visited in this order every cycle
    market_ids: str = "0,1,2"
    # Markets attempted once before the first cycle
    initial_markets: str = ""
    # Skip markets whose endTime has not passed yet
    require_market_ended: bool = True

    # Resolution gate: submit iff confidence >= threshold
    confidence_threshold: int = Field(default=80, ge=0, le=100)

    # Feeds
    feed_timeout_sec: float = Field(default=10.0, gt=0)
    # Optional JSON file with "feeds" and "markets" tables (built-in table when empty)
    rules_path: str = ""

    # Transactions
    tx_receipt_timeout_sec: float = Field(default=120.0, gt=0)
    gas_limit: int = Field(default=300_000, gt=21_000)
    gas_price_multiplier: float = Field(default=1.2, ge=1.0, le=5.0)

    # Two-step commit journal (crash between attestation and resolution)
    journal_enabled: bool = True
    journal_db: str = "resolver_state.db"

    # Market view
    market_cache_ttl_sec: float = Field(default=15.0, ge=0)

    # Modes
    dry_run: bool = False
    log_level: str = "INFO"


def parse_market_ids(raw: str) -> list[int]:
    """Parse '0, 1,2' into [0, 1, 2], preserving order and dropping duplicates."""
    ids: list[int] = []
    for token in raw.split(","):
        token = token.strip()
        if not token:
            continue
        try:
            market_id = int(token)
        except ValueError:
            raise ConfigurationMissing(f"Invalid market id {token!r} in {raw!r}") from None
        if market_id < 0:
            raise ConfigurationMissing(f"Market id must be non-negative, got {market_id}")
        if market_id not in ids:
            ids.append(market_id)
    return ids


def require_signing_key(cfg: Config) -> str:
    """Return the signing key or raise ConfigurationMissing. Polling must not start without it."""
    key = cfg.private_key.strip()
    if not key:
        raise ConfigurationMissing("PRIVATE_KEY is not set; refusing to start the resolver")
    return key


def load_config() -> Config:
    """Load and validate config from environment. Raises on invalid fields."""
    return Config()
