"""Application configuration using pydantic-settings."""

from decimal import Decimal
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _chain_key(chain) -> str:
    """Lookup key for a chain name or Chain member."""
    return str(getattr(chain, "value", chain)).lower()


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Database
    # ======================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/htlcbridge.db",
        description="Database connection URL",
    )

    # ======================
    # API
    # ======================
    api_host: str = Field(default="0.0.0.0", description="API server host")
    api_port: int = Field(default=8000, description="API server port")

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=True, description="Enable debug mode")
    dry_run: bool = Field(
        default=True, description="Use simulated ledgers instead of live chains"
    )
    dry_run_balance: Decimal = Field(
        default=Decimal("1000000"),
        description="Starting balance of every account on a simulated ledger",
    )

    # ======================
    # Chain RPC Endpoints
    # ======================
    eth_rpc_url: str = Field(
        default="https://eth.llamarpc.com", description="Ethereum RPC URL"
    )
    polygon_rpc_url: str = Field(
        default="https://polygon-rpc.com", description="Polygon RPC URL"
    )
    stellar_horizon_url: str = Field(
        default="https://horizon.stellar.org", description="Stellar Horizon URL"
    )
    stellar_network_passphrase: str = Field(
        default="Public Global Stellar Network ; September 2015",
        description="Stellar network passphrase",
    )

    # ======================
    # Contracts
    # ======================
    eth_htlc_address: str = Field(default="", description="HTLC contract on Ethereum")
    polygon_htlc_address: str = Field(default="", description="HTLC contract on Polygon")
    eth_oracle_address: str = Field(default="", description="Price oracle on Ethereum")
    polygon_oracle_address: str = Field(default="", description="Price oracle on Polygon")
    htlc_gas_limit: int = Field(default=200000, description="Gas limit for HTLC calls")
    htlc_log_lookback_blocks: int = Field(
        default=50000, description="Blocks searched when recovering a lock by its terms"
    )

    # ======================
    # Counterparty (bridge liquidity accounts)
    # ======================
    eth_counterparty_address: str = Field(
        default="", description="Bridge account on Ethereum"
    )
    polygon_counterparty_address: str = Field(
        default="", description="Bridge account on Polygon"
    )
    stellar_counterparty_address: str = Field(
        default="", description="Bridge account on Stellar"
    )

    # ======================
    # Quotes
    # ======================
    oneinch_api_key: str = Field(default="", description="1inch API key")
    oneinch_api_url: str = Field(
        default="https://api.1inch.dev/swap/v6.0", description="1inch swap API URL"
    )
    default_slippage_bps: int = Field(
        default=100, description="Default slippage tolerance in basis points"
    )
    oracle_max_age_seconds: int = Field(
        default=3600, description="Oracle prices older than this are ignored"
    )
    fallback_prices: dict[str, Decimal] = Field(
        default_factory=lambda: {
            "polygon:MATIC": Decimal("0.85"),
            "polygon:USDC": Decimal("1"),
            "polygon:USDT": Decimal("1"),
            "polygon:DAI": Decimal("1"),
            "ethereum:ETH": Decimal("3000"),
            "ethereum:USDC": Decimal("1"),
            "ethereum:USDT": Decimal("1"),
            "ethereum:DAI": Decimal("1"),
            "stellar:XLM": Decimal("0.12"),
            "stellar:USDC": Decimal("1"),
        },
        description="Static USD prices keyed by chain:SYMBOL",
    )
    bridge_fee_bps: dict[str, int] = Field(
        default_factory=lambda: {"polygon": 20, "stellar": 30, "ethereum": 25},
        description="Bridge fee in basis points per source chain",
    )
    default_bridge_fee_bps: int = Field(default=25, description="Bridge fee for other chains")
    fallback_gas_fee: Decimal = Field(
        default=Decimal("0.001"), description="Lock fee used when live fee data fails"
    )
    base_swap_time_seconds: int = Field(
        default=300, description="Base estimated swap duration"
    )

    # ======================
    # Swap lifecycle
    # ======================
    swap_timelock_seconds: int = Field(
        default=3600, description="Timelock duration for new swaps"
    )
    min_swap_amount: Decimal = Field(default=Decimal("0.001"), description="Minimum swap amount")
    max_swap_amount: Decimal = Field(
        default=Decimal("1000000"), description="Maximum swap amount"
    )
    monitor_interval_seconds: float = Field(
        default=30.0, description="Seconds between expiry scans"
    )
    chain_call_timeout: float = Field(
        default=60.0, description="Timeout for a single chain call in seconds"
    )
    chain_retry_attempts: int = Field(
        default=3, description="Attempts for retryable chain calls"
    )
    chain_retry_backoff_seconds: float = Field(
        default=1.0, description="Initial retry backoff, doubled per attempt"
    )
    swap_lock_timeout: float = Field(
        default=120.0, description="Maximum wait for the per-swap lock"
    )

    # ======================
    # Encryption
    # ======================
    master_key: Optional[str] = Field(
        default=None, description="Master key for encrypted hot-wallet keys (Fernet key)"
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    def get_rpc_url(self, chain: str) -> str:
        """Get RPC URL for a specific chain."""
        rpc_map = {
            "ethereum": self.eth_rpc_url,
            "polygon": self.polygon_rpc_url,
            "stellar": self.stellar_horizon_url,
        }
        return rpc_map.get(_chain_key(chain), "")

    def get_htlc_address(self, chain: str) -> str:
        """Get HTLC contract address for an EVM chain."""
        return {
            "ethereum": self.eth_htlc_address,
            "polygon": self.polygon_htlc_address,
        }.get(_chain_key(chain), "")

    def get_oracle_address(self, chain: str) -> str:
        """Get price oracle address for an EVM chain."""
        return {
            "ethereum": self.eth_oracle_address,
            "polygon": self.polygon_oracle_address,
        }.get(_chain_key(chain), "")

    def get_counterparty_address(self, chain: str) -> str:
        """Get the bridge account that takes the other side of swaps on a chain."""
        return {
            "ethereum": self.eth_counterparty_address,
            "polygon": self.polygon_counterparty_address,
            "stellar": self.stellar_counterparty_address,
        }.get(_chain_key(chain), "")

    def get_bridge_fee_bps(self, chain: str) -> int:
        """Get bridge fee basis points for a source chain."""
        return self.bridge_fee_bps.get(_chain_key(chain), self.default_bridge_fee_bps)

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "dry_run": self.dry_run,
            "api_host": self.api_host,
            "api_port": self.api_port,
            "database_url": self._redact_url(self.database_url),
            "chains": {
                "ethereum": {
                    "rpc": self.eth_rpc_url,
                    "htlc": self.eth_htlc_address or "(not set)",
                    "oracle": self.eth_oracle_address or "(not set)",
                },
                "polygon": {
                    "rpc": self.polygon_rpc_url,
                    "htlc": self.polygon_htlc_address or "(not set)",
                    "oracle": self.polygon_oracle_address or "(not set)",
                },
                "stellar": {
                    "horizon": self.stellar_horizon_url,
                    "network": self.stellar_network_passphrase,
                },
            },
            "quotes": {
                "oneinch_api_key": "***" if self.oneinch_api_key else "(not set)",
                "slippage_bps": self.default_slippage_bps,
                "oracle_max_age_seconds": self.oracle_max_age_seconds,
            },
            "swaps": {
                "timelock_seconds": self.swap_timelock_seconds,
                "min_amount": str(self.min_swap_amount),
                "max_amount": str(self.max_swap_amount),
                "monitor_interval_seconds": self.monitor_interval_seconds,
                "chain_call_timeout": self.chain_call_timeout,
            },
            "master_key": "***" if self.master_key else "(not set)",
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact sensitive parts of database URL."""
        if "://" in url and "@" in url:
            proto, rest = url.split("://", 1)
            if "@" in rest:
                creds, host = rest.rsplit("@", 1)
                if ":" in creds:
                    user, _ = creds.split(":", 1)
                    return f"{proto}://{user}:***@{host}"
        return url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
