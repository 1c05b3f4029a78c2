"""
Settlement Engine - Configuration.

============================================================
PURPOSE
============================================================
All configuration for the Settlement Engine.

CRITICAL CONSTRAINTS:
- Bounded retries only
- Rate limits are global per channel
- Deterministic netting

============================================================
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Optional
from decimal import Decimal

from dotenv import load_dotenv


# ============================================================
# RETRY CONFIGURATION
# ============================================================

@dataclass
class RetryConfig:
    """
    Retry configuration for exchange calls.

    Retries only rate-limit, server and transport errors.
    """

    max_retries: int = 4
    """Maximum number of retries after the first call."""

    initial_delay_seconds: float = 1.5
    """Delay before the first retry."""

    backoff_multiplier: float = 2.0
    """Exponential backoff multiplier."""

    max_delay_seconds: float = 30.0
    """Maximum delay between retries."""


# ============================================================
# RATE LIMIT CONFIGURATION
# ============================================================

@dataclass
class ChannelLimit:
    """Spacing and concurrency for one request channel."""

    min_interval_seconds: float
    """Minimum time between two request starts on this channel."""

    max_concurrency: int = 1
    """Maximum requests in flight on this channel."""


@dataclass
class RateLimitConfig:
    """
    Rate limit configuration.

    Matches the exchange's per-minute limits
    (20 quotes, 5 orders, 200 reads).
    """

    quotes: ChannelLimit = field(default_factory=lambda: ChannelLimit(3.0, 1))
    """Quote requests."""

    orders: ChannelLimit = field(default_factory=lambda: ChannelLimit(12.0, 1))
    """Order creation and cancellation."""

    reads: ChannelLimit = field(default_factory=lambda: ChannelLimit(0.3, 2))
    """Compliance, pair bounds, coins and status reads."""

    def channels(self) -> Dict[str, ChannelLimit]:
        return {
            "quotes": self.quotes,
            "orders": self.orders,
            "reads": self.reads,
        }


# ============================================================
# TIMEOUT CONFIGURATION
# ============================================================

@dataclass
class TimeoutConfig:
    """
    Timeout configuration.
    """

    connection_timeout_seconds: float = 5.0
    """Connection timeout."""

    read_timeout_seconds: float = 20.0
    """Total timeout for exchange requests."""

    price_timeout_seconds: float = 5.0
    """Timeout for price lookups."""


# ============================================================
# EXCHANGE CONFIGURATION
# ============================================================

@dataclass
class ExchangeConfig:
    """
    Exchange-specific configuration.
    """

    exchange_id: str = "sideshift"
    """Exchange identifier."""

    rest_url: str = "https://sideshift.ai/api/v2"
    """REST API base URL."""

    # Credentials (loaded from env)
    secret_env: str = "SIDESHIFT_SECRET"
    """Environment variable for the API secret."""

    affiliate_id_env: str = "AFFILIATE_ID"
    """Environment variable for the affiliate id."""

    secret: str = ""
    affiliate_id: str = ""

    commission_rate: Decimal = Decimal("0.02")
    """Affiliate commission rate sent with pair and quote requests."""

    # Funding leg
    deposit_unit: str = "usdc"
    """Unit every order is funded with."""

    deposit_chain: str = "base"
    """Chain every order is funded on."""

    default_network: str = "mainnet"
    """Network used when a coin has no chain."""

    quote_lifetime_seconds: float = 900.0
    """Assumed quote lifetime when the exchange omits expiresAt."""

    # Caches
    pair_cache_ttl_seconds: float = 120.0
    """Pair bounds cache TTL."""

    coins_cache_ttl_seconds: float = 600.0
    """Coin list cache TTL."""

    force_user_ip: str = ""
    """Overrides the caller IP forwarded to the exchange."""

    def load_credentials(self) -> None:
        """Fill secret and affiliate id from the environment."""
        self.secret = self.secret or os.getenv(self.secret_env, "")
        self.affiliate_id = self.affiliate_id or os.getenv(self.affiliate_id_env, "")


# ============================================================
# PRICE ORACLE CONFIGURATION
# ============================================================

DEFAULT_FALLBACK_RATES: Dict[str, Decimal] = {
    "btc": Decimal("45000"),
    "eth": Decimal("2500"),
    "sol": Decimal("100"),
    "usdc": Decimal("1"),
    "usdt": Decimal("1"),
    "dai": Decimal("1"),
    "pol": Decimal("0.8"),
    "matic": Decimal("0.8"),
    "bnb": Decimal("300"),
    "xrp": Decimal("0.5"),
    "ada": Decimal("0.4"),
    "dot": Decimal("6"),
    "avax": Decimal("30"),
    "link": Decimal("15"),
    "atom": Decimal("10"),
}


@dataclass
class PriceOracleConfig:
    """
    Price oracle configuration.
    """

    base_url: str = "https://api.coingecko.com/api/v3"
    """CoinGecko API base URL."""

    api_key_env: str = "COINGECKO_API_KEY"
    """Environment variable for the API key."""

    api_key: str = ""

    cache_ttl_seconds: float = 120.0
    """Price cache TTL."""

    fallback_rates: Dict[str, Decimal] = field(
        default_factory=lambda: dict(DEFAULT_FALLBACK_RATES)
    )
    """Static rates used when a lookup fails."""

    default_rate: Decimal = Decimal("1")
    """Rate for units missing from the fallback table."""

    def fallback_for(self, unit: str) -> Decimal:
        return self.fallback_rates.get(unit.lower(), self.default_rate)


# ============================================================
# MASTER CONFIGURATION
# ============================================================

@dataclass
class SettlementEngineConfig:
    """
    Master configuration for Settlement Engine.
    """

    retry: RetryConfig = field(default_factory=RetryConfig)
    """Retry configuration."""

    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    """Rate limit configuration."""

    timeout: TimeoutConfig = field(default_factory=TimeoutConfig)
    """Timeout configuration."""

    exchange: ExchangeConfig = field(default_factory=ExchangeConfig)
    """Exchange configuration."""

    price_oracle: PriceOracleConfig = field(default_factory=PriceOracleConfig)
    """Price oracle configuration."""

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "SettlementEngineConfig":
        """Build configuration from the environment (and a .env file)."""
        load_dotenv(dotenv_path)

        config = cls()
        exchange = config.exchange
        exchange.rest_url = os.getenv("SIDESHIFT_API_BASE", exchange.rest_url)
        exchange.load_credentials()
        commission = os.getenv("COMMISSION_RATE")
        if commission:
            exchange.commission_rate = Decimal(commission)
        exchange.force_user_ip = os.getenv("FORCE_USER_IP", "")

        oracle = config.price_oracle
        oracle.api_key = os.getenv(oracle.api_key_env, "")
        return config

    @classmethod
    def for_testing(cls) -> "SettlementEngineConfig":
        """Get configuration for testing."""
        return cls(
            retry=RetryConfig(max_retries=1, initial_delay_seconds=0.0),
            rate_limit=RateLimitConfig(
                quotes=ChannelLimit(0.0, 1),
                orders=ChannelLimit(0.0, 1),
                reads=ChannelLimit(0.0, 2),
            ),
            exchange=ExchangeConfig(secret="test-secret", affiliate_id="test-affiliate"),
        )

    @classmethod
    def for_production(cls) -> "SettlementEngineConfig":
        """Get configuration for production."""
        config = cls.from_env()
        config.retry = RetryConfig(max_retries=4)
        return config
