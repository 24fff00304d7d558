"""Application configuration and settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings

from .core.domain import EstablishmentSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "Callboard"
    debug: bool = False
    api_prefix: str = "/api"
    log_level: str = "INFO"

    # Remote store
    database_url: str = "sqlite+aiosqlite:///./callboard.db"

    # Synchronization
    poll_interval_seconds: float = 5.0
    fetch_timeout_seconds: float = 8.0

    # Customers
    max_favorites: int = 3

    # Defaults applied when an establishment has no usable settings
    default_total_tables: int = 10
    default_time_green: int = 30  # seconds
    default_time_yellow: int = 90  # seconds
    default_qty_green: int = 2
    default_qty_yellow: int = 4

    def default_establishment_settings(self) -> EstablishmentSettings:
        return EstablishmentSettings(
            total_tables=self.default_total_tables,
            time_green=self.default_time_green,
            time_yellow=self.default_time_yellow,
            qty_green=self.default_qty_green,
            qty_yellow=self.default_qty_yellow,
        )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
