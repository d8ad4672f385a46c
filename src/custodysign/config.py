"""Application configuration using pydantic-settings.

Settings are read by the factories and the CLI only. Core components
(signer, resolver, monitor) receive their collaborators and parameters at
construction time and never look at the environment.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Custody API
    # ======================
    fireblocks_api_key: str = Field(default="", description="Fireblocks API user key")
    fireblocks_secret_key_path: str = Field(
        default="./fireblocks_secret.key", description="Path to the API user RSA private key"
    )
    fireblocks_base_url: str = Field(
        default="sandbox", description="sandbox, production or an explicit API URL"
    )
    http_timeout: float = Field(default=30.0, description="HTTP timeout in seconds")

    # ======================
    # Signer
    # ======================
    vault_account_id: str = Field(default="0", description="Vault account holding the signing key")
    signing_asset_id: str = Field(default="ETH", description="Asset whose key signs typed data")
    signing_poll_interval: float = Field(default=5.0, description="Seconds between job status checks")
    signing_max_attempts: int = Field(default=120, description="Job status checks before timing out")

    # ======================
    # Transaction monitor
    # ======================
    monitor_poll_interval: float = Field(
        default=2.0, description="Seconds between custody status checks"
    )
    monitor_max_attempts: int = Field(
        default=900, description="Custody status checks before timing out"
    )
    chain_poll_interval: float = Field(default=4.0, description="Seconds between receipt checks")
    chain_max_attempts: int = Field(default=450, description="Receipt checks before giving up")
    required_confirmations: int = Field(default=1, description="On-chain confirmations to wait for")
    eth_rpc_url: Optional[str] = Field(
        default=None, description="EVM JSON-RPC URL for on-chain confirmation (optional)"
    )

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    log_level: str = Field(default="INFO", description="Logging level")

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def has_credentials(self) -> bool:
        """Check if custody API credentials are configured."""
        return bool(self.fireblocks_api_key) and Path(self.fireblocks_secret_key_path).is_file()

    def read_secret_key(self) -> str:
        """Read the API user private key (PEM)."""
        return Path(self.fireblocks_secret_key_path).expanduser().read_text(encoding="utf-8")

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "custody": {
                "base_url": self.fireblocks_base_url,
                "api_key": "***" if self.fireblocks_api_key else "(not set)",
                "secret_key_path": self.fireblocks_secret_key_path,
            },
            "signer": {
                "vault_account_id": self.vault_account_id,
                "asset_id": self.signing_asset_id,
                "poll_interval": self.signing_poll_interval,
                "max_attempts": self.signing_max_attempts,
            },
            "monitor": {
                "poll_interval": self.monitor_poll_interval,
                "max_attempts": self.monitor_max_attempts,
                "required_confirmations": self.required_confirmations,
                "rpc": self._redact_url(self.eth_rpc_url) if self.eth_rpc_url else "(not set)",
            },
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact API keys embedded in RPC URL paths (e.g. .../v2/<key>)."""
        if "://" not in url:
            return url
        proto, rest = url.split("://", 1)
        host, _, path = rest.partition("/")
        if not path:
            return url
        segments = path.split("/")
        segments[-1] = "***" if len(segments[-1]) >= 16 else segments[-1]
        return f"{proto}://{host}/{'/'.join(segments)}"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
