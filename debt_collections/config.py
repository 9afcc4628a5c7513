"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class CollectionsConfig(BaseSettings):
    """Collections core configuration"""

    model_config = SettingsConfigDict(
        env_prefix="COLLECTIONS_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage configuration
    database_url: str = "sqlite:///collections.db"

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Money configuration
    default_currency: str = "USD"

    # Payment plan rules
    payment_plan_tolerance: str = "0.01"  # Allowed shortfall of installments vs total

    # Risk classification thresholds (days overdue)
    risk_medium_days: int = 1
    risk_high_days: int = 15
    risk_critical_days: int = 46
    risk_upgrade_window: int = 3  # Consecutive unreachable outcomes that bump risk

    # Reminder configuration
    max_reminders: int = 5
    reminder_webhook_url: str = ""  # Empty = log-only scheduler
    reminder_timeout: float = 2.0
    reminder_api_key: str = ""

    # Feature flags
    enable_audit_logging: bool = True


# Global configuration instance
config = CollectionsConfig()


def get_config() -> CollectionsConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> CollectionsConfig:
    """Reload configuration from environment"""
    global config
    config = CollectionsConfig()
    return config
