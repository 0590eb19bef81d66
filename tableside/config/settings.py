"""Application settings using Pydantic."""
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Client core settings loaded from environment variables.

    This uses Pydantic to:
    1. Load values from .env file
    2. Validate data types
    3. Provide defaults
    """

    PROJECT_NAME: str = "Tableside"
    VERSION: str = "0.1.0"

    # Environment & Logging
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "text"  # "text" or "json"
    LOG_DIR: str = "logs"
    LOG_TO_FILE: bool = False

    # Supabase
    SUPABASE_URL: Optional[str] = None
    SUPABASE_KEY: Optional[str] = None  # anon key, requests run under the signed-in user
    SUPABASE_API_KEY: Optional[str] = None  # Legacy fallback

    # Every backend round trip (query, write, auth, realtime handshake) is bounded by this
    BACKEND_TIMEOUT_SECONDS: float = 10.0

    # Where the signed-in profile is persisted between app loads; memory only when unset
    PROFILE_CACHE_PATH: Optional[str] = None

    # Table management
    TABLE_HISTORY_LIMIT: int = 10
    ANALYTICS_WINDOW_DAYS: int = 7

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Create cached settings instance.
    """
    return Settings()


# Create a single instance for easy importing
settings = get_settings()
