"""
Configuration management for the Arithmos x402 API.

Uses pydantic-settings for environment variable loading and validation.
"""

from typing import Dict, List
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables or .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Server Configuration
    server_host: str = Field(default="0.0.0.0", description="Server host address")
    server_port: int = Field(default=8080, description="Business API port")
    metrics_port: int = Field(default=9090, description="Metrics exposition port")
    env: str = Field(default="development", description="Environment (development/production)")
    debug: bool = Field(default=True, description="Debug mode")

    # X402 Payment Configuration
    receiver_address: str = Field(
        default="0x120e011fB8a12bfcB61e5c1d751C26A5D33Aae91",
        description="Wallet address receiving x402 payments"
    )
    payment_asset: str = Field(default="USDC", description="Asset accepted for payment")
    payment_network: str = Field(default="base", description="Network payments settle on")
    payment_scheme: str = Field(default="x402", description="Payment scheme advertised in challenges")
    reject_expired_payments: bool = Field(
        default=False,
        description="Reject payment tokens whose exp claim is in the past"
    )

    # API Pricing (in payment asset units, kept as strings for exact matching)
    gas_price: str = Field(default="0.001", description="Price for /api/gas")
    validators_price: str = Field(default="0.005", description="Price for /api/validators")
    eth_price_price: str = Field(default="0.001", description="Price for /api/eth-price")
    scan_contract_price: str = Field(default="0.005", description="Price for /api/scan-contract")
    scan_token_price: str = Field(default="0.008", description="Price for /api/scan-token")
    scan_wallet_price: str = Field(default="0.01", description="Price for /api/scan-wallet")
    address_labels_price: str = Field(default="0.003", description="Price for /api/address-labels")
    mev_check_price: str = Field(default="0.005", description="Price for /api/mev-check")
    tx_preflight_price: str = Field(default="0.003", description="Price for /api/tx-preflight")
    prompt_test_price: str = Field(default="0.002", description="Price for /api/prompt-test")
    agent_score_price: str = Field(default="0.003", description="Price for /api/agent-score")

    # Cache Configuration
    cache_ttl_seconds: float = Field(
        default=86400.0,
        description="TTL applied to cached scan results"
    )
    cache_sweep_interval_seconds: float = Field(
        default=300.0,
        description="Interval between physical sweeps of expired cache entries"
    )

    # Metrics Configuration
    metrics_window_size: int = Field(
        default=1000,
        description="Number of recent response-time samples kept per endpoint"
    )

    # Upstream Collaborators
    upstream_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout applied around every upstream call"
    )
    eth_rpc_url: str = Field(default="https://eth.drpc.org", description="Ethereum JSON-RPC URL")
    basescan_api_key: str = Field(default="", description="Basescan API key")
    etherscan_api_key: str = Field(default="", description="Etherscan API key")
    basescan_api_url: str = Field(default="https://api.basescan.org/api")
    etherscan_api_url: str = Field(default="https://api.etherscan.io/api")
    honeypot_api_url: str = Field(
        default="https://api.honeypot.is/v2/IsHoneypot",
        description="Honeypot detection service"
    )

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(
        default="json",
        description="Log format (json or text)"
    )

    # CORS Configuration
    cors_origins: str = Field(
        default="*",
        description="Comma-separated list of allowed CORS origins"
    )

    @field_validator("server_port", "metrics_port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate port is in valid range."""
        if not 1 <= v <= 65535:
            raise ValueError("Port must be between 1 and 65535")
        return v

    @field_validator("env")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment is development or production."""
        if v not in ["development", "production"]:
            raise ValueError("Environment must be 'development' or 'production'")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of: {', '.join(valid_levels)}")
        return v_upper

    @field_validator("cache_ttl_seconds", "cache_sweep_interval_seconds", "upstream_timeout_seconds")
    @classmethod
    def validate_positive_seconds(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Durations must be positive")
        return v

    @field_validator("metrics_window_size")
    @classmethod
    def validate_window_size(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Metrics window size must be at least 1")
        return v

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins string into list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def route_prices(self) -> Dict[str, str]:
        """Price of every paid route, keyed by path."""
        return {
            "/api/gas": self.gas_price,
            "/api/validators": self.validators_price,
            "/api/eth-price": self.eth_price_price,
            "/api/scan-contract": self.scan_contract_price,
            "/api/scan-token": self.scan_token_price,
            "/api/scan-wallet": self.scan_wallet_price,
            "/api/address-labels": self.address_labels_price,
            "/api/mev-check": self.mev_check_price,
            "/api/tx-preflight": self.tx_preflight_price,
            "/api/prompt-test": self.prompt_test_price,
            "/api/agent-score": self.agent_score_price,
        }

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.env == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.env == "production"

    def validate_required_production_settings(self) -> None:
        """
        Validate that required settings are configured for production.

        Raises ValueError if critical settings are missing in production.
        """
        if not self.is_production:
            return

        errors = []

        if not self.receiver_address:
            errors.append("RECEIVER_ADDRESS is required in production")

        if self.debug:
            errors.append("DEBUG should be False in production")

        if errors:
            raise ValueError(
                "Production configuration errors:\n" + "\n".join(f"  - {err}" for err in errors)
            )

    def model_post_init(self, __context) -> None:
        """Validate configuration after initialization."""
        if self.is_production:
            self.validate_required_production_settings()


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """
    Get the global settings instance.

    Used as the default when the application factory is not handed settings.
    """
    return settings


__all__ = ["Settings", "settings", "get_settings"]
