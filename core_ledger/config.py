"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings


class LedgerConfig(BaseSettings):
    """Ledger core configuration"""

    # Storage configuration
    database_url: str = "memory://"  # memory:// or sqlite:///path/to/ledger.db

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    # Account numbering
    account_number_length: int = 10
    account_number_max_attempts: int = 20

    class Config:
        env_prefix = "LEDGER_"
        env_file = ".env"
        case_sensitive = False


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
