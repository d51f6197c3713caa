"""Application settings using Pydantic."""
from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    This uses Pydantic to:
    1. Load values from .env file
    2. Validate data types
    3. Provide defaults
    """

    # API Settings
    PROJECT_NAME: str = "Order Coordinator"
    VERSION: str = "1.0.0"
    API_V1_STR: str = "/api/v1"

    # Server Settings
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Environment & Logging
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "text"  # "text" or "json"
    LOG_DIR: str = "logs"
    LOG_TO_FILE: bool = True

    # CORS
    BACKEND_CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://localhost:8000",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:8000",
    ]

    # Pricing (all amounts in minor currency units, paisa for BDT)
    CURRENCY: str = "BDT"
    DELIVERY_FEE: int = 5000
    VAT_PERCENT: int = 5
    ORDER_NUMBER_PREFIX: str = "KL"

    # Per-order critical section
    ORDER_LOCK_TIMEOUT_SECONDS: float = 5.0

    # Notification fanout
    NOTIFICATION_BACKEND: str = "memory"  # "memory" or "redis"
    NOTIFICATION_HISTORY_LIMIT: int = 200
    NOTIFICATION_HISTORY_CHANNELS: int = 10000
    NOTIFICATION_HISTORY_TTL_SECONDS: int = 7 * 24 * 3600

    # Redis
    REDIS_URL: str = "redis://localhost:6379"

    # Supabase (optional persistence mirror)
    SUPABASE_URL: Optional[str] = None
    SUPABASE_SERVICE_ROLE_KEY: Optional[str] = None
    SUPABASE_MIRROR_ENABLED: bool = False

    # Rider candidate lookup
    DEFAULT_RIDER_ZONE: str = "default"

    # Load environment variables from .env; extra fields are ignored.
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        env_file_encoding='utf-8',
        extra="ignore"
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Create cached settings instance.
    """
    return Settings()


# Create a single instance for easy importing
settings = get_settings()
