"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. All settings are validated
at startup — if a required setting is missing, the app fails fast with a
clear error message.

Provider credentials are read once here and handed to the provider client
constructor. To rotate them at runtime, call ``get_settings.cache_clear()``
and build a new client.

Usage:
    from property_clearinghouse.config import get_settings
    settings = get_settings()
    print(settings.database_url)
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the Property Clearinghouse."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True
    app_log_level: str = "DEBUG"
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # --- Database (PostgreSQL) ---
    database_url: str = (
        "postgresql+asyncpg://clearinghouse:clearinghouse_dev"
        "@localhost:5432/property_clearinghouse"
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_echo_sql: bool = False

    # --- Redis ---
    redis_url: str = "redis://localhost:6379/0"
    exchange_rate_cache_ttl_seconds: int = 30

    # --- Payment / custody / KYC provider ---
    provider_base_url: str = "https://www.sandbox.striga.com/api/v1"
    provider_api_key: str = ""
    provider_api_secret: str = ""
    provider_timeout_seconds: float = 10.0
    provider_retry_attempts: int = 3
    provider_retry_min_wait_seconds: float = 0.5
    provider_retry_max_wait_seconds: float = 4.0

    # --- Fund protection ---
    supported_crypto_currencies: str = "BTC,ETH,USDT,USDC,BNB,SOL,POL"
    settlement_fiat_currency: str = "EUR"

    # --- Notifications ---
    notification_webhook_url: str = ""
    notification_timeout_seconds: float = 5.0

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def supported_currency_list(self) -> list[str]:
        """Parse the comma-separated crypto allow-list into upper-case codes."""
        return [
            c.strip().upper()
            for c in self.supported_crypto_currencies.split(",")
            if c.strip()
        ]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()
