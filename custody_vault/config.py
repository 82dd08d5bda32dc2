"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class VaultConfig(BaseSettings):
    """Custody vault configuration"""

    # Vault policy (fixed for the lifetime of each vault instance)
    global_cap: int = 1_000_000
    withdrawal_ceiling: int = 10_000
    vault_id: Optional[str] = None  # None = generate a fresh vault

    # Storage configuration
    database_url: str = "memory"  # "memory" or "sqlite:///path/to/vault.db"

    # Value transfer gate configuration
    transfer_gate: str = "memory"  # memory or http
    settlement_url: str = "http://localhost:8081"
    settlement_timeout: float = 2.0
    settlement_api_key: str = ""

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    # Feature flags
    enable_events: bool = True

    class Config:
        env_prefix = "VAULT_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = VaultConfig()


def get_config() -> VaultConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> VaultConfig:
    """Reload configuration from environment"""
    global config
    config = VaultConfig()
    return config
