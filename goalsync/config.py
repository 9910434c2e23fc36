"""Application configuration using Pydantic Settings."""
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # MongoDB (remote goal store)
    mongodb_url: str = "mongodb://localhost:27017"
    mongodb_db_name: str = "goalsync"

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    debug: bool = False

    # CORS
    cors_origins: str = "http://localhost:3000,http://localhost:8000"

    # Local cache
    cache_path: str = "~/.goalsync/cache.json"
    cache_key: str = "goalsync_goals"

    # Remote store client
    remote_base_url: str = "http://localhost:8000"
    remote_token: Optional[str] = None
    remote_timeout_seconds: float = 10.0

    # Synchronization
    retry_cooldown_seconds: float = 60.0
    debounce_seconds: float = 0.75

    # Logging
    log_level: str = "INFO"

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]


settings = Settings()
