"""Application configuration using pydantic-settings.

All settings come from environment variables (or a local ``.env`` file).
The master key and RPC endpoint are validated where they are used so that a
misconfigured process can still start and report a service-unavailable
condition instead of crashing at import time.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

MIN_MASTER_KEY_LENGTH = 16


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
        default="sqlite+aiosqlite:///./data/stablewallet.db",
        description="Database connection URL",
    )

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=False, description="Enable debug logging")

    # ======================
    # Envelope encryption
    # ======================
    master_key: Optional[str] = Field(
        default=None,
        description="Master secret for envelope encryption (min 16 chars). Use KMS in production.",
    )
    scrypt_n: int = Field(default=16384, description="scrypt CPU/memory cost")
    scrypt_r: int = Field(default=8, description="scrypt block size")
    scrypt_p: int = Field(default=1, description="scrypt parallelization")

    # ======================
    # HD wallet
    # ======================
    default_network: str = Field(default="POLYGON_AMOY", description="Default derivation network")
    mnemonic_words: int = Field(default=12, description="BIP-39 mnemonic length (12 or 24)")

    # ======================
    # Key export controls
    # ======================
    key_export_max_attempts: int = Field(
        default=5, description="Private key exports allowed per principal per window"
    )
    key_export_window_seconds: int = Field(
        default=900, description="Key export rate limit window (seconds)"
    )

    # ======================
    # Chain
    # ======================
    rpc_url: Optional[str] = Field(default=None, description="EVM JSON-RPC endpoint")
    rpc_timeout_seconds: float = Field(default=10.0, description="Per-call RPC timeout")
    chain_id: int = Field(default=80002, description="Chain id (selects deployment file)")
    deployments_path: str = Field(
        default="deployments", description="Directory holding <network>.json deployment files"
    )
    mock_swap_address: Optional[str] = Field(
        default=None, description="MockSwap contract used for on-chain swap verification"
    )

    # Token contract overrides (POLYGON_AMOY)
    usdt_token_address: Optional[str] = Field(default=None, description="USDT token contract")
    usdc_token_address: Optional[str] = Field(default=None, description="USDC token contract")
    dai_token_address: Optional[str] = Field(default=None, description="DAI token contract")

    # ======================
    # Deposit watcher
    # ======================
    confirmations: int = Field(default=6, description="Confirmations required before crediting")
    watcher_poll_ms: int = Field(default=12000, description="Watcher polling interval (ms)")
    watcher_max_block_range: int = Field(
        default=2000, description="Maximum blocks queried per watcher cycle"
    )
    watcher_cycle_timeout_seconds: float = Field(
        default=60.0, description="Upper bound on a single watcher cycle"
    )

    # ======================
    # Audit
    # ======================
    audit_queue_size: int = Field(default=1000, description="Pending audit records kept in memory")

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def has_master_key(self) -> bool:
        """Check if a usable master key is configured."""
        return bool(self.master_key and len(self.master_key) >= MIN_MASTER_KEY_LENGTH)

    @property
    def watcher_poll_seconds(self) -> float:
        return self.watcher_poll_ms / 1000

    def get_token_overrides(self) -> dict[str, str]:
        """Token contract addresses configured through the environment."""
        overrides = {
            "USDT": self.usdt_token_address,
            "USDC": self.usdc_token_address,
            "DAI": self.dai_token_address,
        }
        return {asset: addr for asset, addr in overrides.items() if addr}

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "database_url": self._redact_url(self.database_url),
            "master_key": "***" if self.master_key else "(not set)",
            "master_key_valid": self.has_master_key,
            "chain": {
                "chain_id": self.chain_id,
                "rpc": self._redact_url(self.rpc_url) if self.rpc_url else "(not set)",
                "deployments_path": self.deployments_path,
            },
            "watcher": {
                "confirmations": self.confirmations,
                "poll_ms": self.watcher_poll_ms,
                "max_block_range": self.watcher_max_block_range,
            },
            "key_export": {
                "max_attempts": self.key_export_max_attempts,
                "window_seconds": self.key_export_window_seconds,
            },
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact credentials embedded in a URL."""
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
