"""
Application configuration using Pydantic settings.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False

    # CORS
    cors_origins: str = "http://localhost:5173,http://localhost:3000"

    # Record store
    store_backend: str = "memory"  # memory | rest
    store_url: str = ""
    store_api_key: str = ""
    store_timeout_seconds: float = 15.0

    # Scheduling
    date_padding_days: int = 7
    zoom_min: float = 0.3
    zoom_max: float = 2.5
    zoom_step: float = 0.1
    lag_limit_days: int = 365

    # Logging
    environment: str = "development"  # development | staging | production
    log_level: str = "INFO"
    enable_file_logging: bool = False
    log_max_bytes: int = 10485760  # 10MB
    log_backup_count: int = 5

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def uses_rest_store(self) -> bool:
        return self.store_backend == "rest"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "PLANBOARD_"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
