"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerConfig(BaseSettings):
    """Bank ledger service configuration"""

    model_config = SettingsConfigDict(
        env_prefix="BANK_LEDGER_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Database configuration
    database_url: str = "sqlite:///bank_ledger.db"  # memory://, sqlite:///path, postgresql://...
    database_pool_size: int = 5
    database_pool_timeout: float = 30.0  # seconds to wait for a connection or lock

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 3000
    api_reload: bool = False
    cors_origins: List[str] = ["*"]

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stderr

    # Load demo accounts into an empty store at startup
    seed_demo_data: bool = False


# Global configuration instance
config = LedgerConfig()


def get_config() -> LedgerConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LedgerConfig:
    """Reload configuration from environment"""
    global config
    config = LedgerConfig()
    return config
