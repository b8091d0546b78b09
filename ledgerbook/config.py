"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class LedgerbookConfig(BaseSettings):
    """Ledgerbook bookkeeping service configuration"""
    
    # Storage configuration
    storage_backend: str = "sqlite"  # sqlite or memory
    database_path: str = "ledgerbook.db"
    
    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090
    api_title: str = "Ledgerbook API"
    cors_origins: str = "*"  # Comma separated
    
    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout
    
    # Pagination
    default_page_size: int = 50
    max_page_size: int = 200
    
    # Bookkeeping rules
    default_auto_post: bool = True
    bootstrap_tenant_defaults: bool = True  # Seed voucher types and ledgers on tenant creation
    company_state_code: str = ""  # Used for GST place-of-supply checks
    
    class Config:
        env_prefix = "LEDGERBOOK_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = LedgerbookConfig()


def get_config() -> LedgerbookConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LedgerbookConfig:
    """Reload configuration from environment"""
    global config
    config = LedgerbookConfig()
    return config
