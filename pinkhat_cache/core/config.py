"""
Configuration management using Pydantic Settings.
Supports multiple environments: development, staging, production.
"""

from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment-based configuration."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Application
    app_name: str = "Pinkhat Game Cache"
    app_version: str = "0.1.0"
    debug: bool = False
    environment: str = "development"

    # Database
    database_url: str = "sqlite+aiosqlite:///./data/pinkhat.db"
    database_pool_size: int = 10
    database_max_overflow: int = 20

    # Chain
    rpc_url: str = "https://testnet-passet-hub-eth-rpc.polkadot.io"
    game_manager_address: str = ""
    hat_nft_address: str = ""
    rpc_timeout: int = 30  # seconds

    # Indexer settings
    indexer_start_block: int = 0
    indexer_batch_size: int = 2000  # blocks per catch-up request
    indexer_poll_interval: float = 5.0  # seconds
    indexer_max_retries: int = 3
    indexer_retry_delay: float = 1.0  # seconds, doubled per attempt
    indexer_health_interval: int = 300  # seconds

    # Hat metadata
    metadata_timeout: int = 10  # seconds
    ipfs_gateway: str = "https://ipfs.io/ipfs/"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console
    log_file: Optional[str] = None

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        allowed = ["development", "staging", "production"]
        if v not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed:
            raise ValueError(f"Log level must be one of: {allowed}")
        return v.upper()

    @field_validator("indexer_batch_size", "indexer_max_retries")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Value must be at least 1")
        return v

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def chain_configured(self) -> bool:
        return bool(self.game_manager_address)


# Global settings instance
settings = Settings()


class DatabaseConfig:
    """Database-specific configuration."""

    @staticmethod
    def get_database_url(url: Optional[str] = None) -> str:
        """Get database URL with the async driver for its backend."""
        url = url or settings.database_url
        if url.startswith("postgresql://"):
            return url.replace("postgresql://", "postgresql+asyncpg://", 1)
        if url.startswith("sqlite://"):
            return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return url

    @staticmethod
    def is_sqlite(url: str) -> bool:
        return url.startswith("sqlite")

    @staticmethod
    def get_engine_config(url: str) -> dict:
        """Get SQLAlchemy engine configuration."""
        if DatabaseConfig.is_sqlite(url):
            # SQLite uses a file lock instead of a connection pool limit
            return {"connect_args": {"timeout": 30}}
        return {
            "pool_size": settings.database_pool_size,
            "max_overflow": settings.database_max_overflow,
            "pool_pre_ping": True,
            "pool_recycle": 3600,
        }


class ChainConfig:
    """Chain-specific configuration and constants."""

    ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

    @staticmethod
    def get_rpc_config() -> dict:
        """Get RPC client configuration."""
        return {
            "endpoint": settings.rpc_url,
            "game_manager": settings.game_manager_address,
            "hat_nft": settings.hat_nft_address,
            "timeout": settings.rpc_timeout,
        }
