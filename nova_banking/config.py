"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class NovaConfig(BaseSettings):
    """Nova banking ledger configuration"""
    
    # Database configuration
    database_url: str = "sqlite:///nova_banking.db"  # memory://, sqlite:///path or postgresql://...
    
    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090
    
    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout
    
    # Business rules configuration (decimal strings)
    min_initial_deposit: str = "1000"
    min_fund_request: str = "100"
    account_request_currency: str = "INR"
    starter_balance: str = "1000.00"
    starter_currency: str = "USD"
    account_card_validity_years: int = 5
    starter_card_validity_years: int = 3
    account_number_attempts: int = 5
    
    # Feature flags
    enable_audit_logging: bool = True
    
    class Config:
        env_prefix = "NOVA_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = NovaConfig()


def get_config() -> NovaConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> NovaConfig:
    """Reload configuration from environment"""
    global config
    config = NovaConfig()
    return config
