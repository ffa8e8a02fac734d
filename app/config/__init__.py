"""
Application Settings
Load from environment variables
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Settings(BaseSettings):
    """Application settings from environment"""

    # ======================
    # Database
    # ======================
    DATABASE_URL: str = "sqlite+aiosqlite:///./savings_tracker.db"
    AUTO_CREATE_TABLES: bool = False

    # ======================
    # Application
    # ======================
    APP_ENV: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000

    # ======================
    # Execution tracking
    # ======================
    UNDO_WINDOW_HOURS: int = 24
    PROGRESS_CACHE_TTL_SECONDS: float = 2.0

    # ======================
    # Exchange rates
    # ======================
    EXCHANGE_RATE_API_URL: str = "https://api.coingecko.com/api/v3/simple/price"
    EXCHANGE_RATE_API_KEY: Optional[str] = None
    EXCHANGE_RATE_CACHE_SECONDS: int = 300
    RATE_LOOKUP_TIMEOUT_SECONDS: float = 10.0

    # ======================
    # Pydantic v2 config
    # ======================
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="forbid",
    )


settings = Settings()
