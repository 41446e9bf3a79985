"""Application configuration.

Loads settings from environment variables with sensible defaults.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API
    api_version: str = "0.1.0"
    debug: bool = False

    # Database
    database_url: str = "postgresql+asyncpg://channelsync:channelsync_dev_password@db:5432/channelsync"

    # Discovery
    discovery_freshness_days: int = 30
    discovery_http_timeout: float = 30.0

    # Taxonomy health
    taxonomy_stale_days: int = 35

    # Batch jobs
    inheritance_batch_size: int = 50
    migration_batch_size: int = 100

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    class Config:
        """Pydantic configuration."""

        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "CHANNELSYNC_"


settings = Settings()
