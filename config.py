"""
Configuration management for BahtLedger.
Uses pydantic-settings for type-safe, centralized configuration.
"""

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Uses pydantic-settings for validation and type safety.
    """

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        extra='ignore'  # Allow extra fields in .env for flexibility
    )

    # Database
    database_url: str = "sqlite:///bahtledger.db"
    db_echo: bool = False

    # Ledger
    default_exchange_rate: float = 35.0  # USD->THB used when a trade carries no rate

    # Exchange rate provider
    fallback_usd_thb_rate: float = 34.5  # Last resort when every source and the cache fail
    rate_cache_ttl_seconds: int = 3600
    rate_refresh_minutes: int = 60

    # Quote providers
    finnhub_api_key: Optional[str] = None
    alpha_vantage_api_key: Optional[str] = None
    quote_batch_size: int = 5
    quote_refresh_minutes: int = 15
    http_timeout_seconds: float = 10.0

    # Logging
    log_level: str = "INFO"

    @property
    def is_finnhub_configured(self) -> bool:
        """Check if the Finnhub quote provider can be used."""
        return bool(self.finnhub_api_key)

    @property
    def is_alpha_vantage_configured(self) -> bool:
        """Check if the Alpha Vantage quote provider can be used."""
        return bool(self.alpha_vantage_api_key)


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """Reload settings from environment (useful for testing)."""
    global _settings
    _settings = Settings()
    return _settings
