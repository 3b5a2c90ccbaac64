"""Application configuration.

Loads settings from environment variables with sensible defaults.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API
    api_version: str = "0.1.0"
    debug: bool = False

    # Storage
    storage_backend: str = "postgres"
    database_url: str = "postgresql+asyncpg://storefront:storefront_dev_password@db:5432/storefront"

    # Authentication
    admin_api_key: str = "dev-admin-key-change-in-production"

    # Locking
    lock_timeout_ms: int = 5000
    lock_retry_attempts: int = 3
    lock_retry_backoff_ms: int = 50

    # Returns
    return_period_days: int = 14

    # Product cache
    product_cache_ttl_seconds: int = 300

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    class Config:
        """Pydantic configuration."""

        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
