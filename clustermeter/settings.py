"""Centralized settings for the cluster metering core.

Uses pydantic-settings to load from environment variables (prefixed
CLUSTERMETER_) with defaults suitable for local development.
"""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Metering settings loaded from environment variables."""

    # --- Persistence ---
    database_url: str = "sqlite:///clustermeter.db"

    # --- Prices ---
    price_fetch_timeout: float = 5.0  # seconds
    price_encryption_key: str = "clustermeter-dev-key-change-in-production"
    encrypted_prices_file: Optional[str] = None

    model_config = {
        "env_prefix": "CLUSTERMETER_",
        "env_file": ".env",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton."""
    return Settings()
