"""Application configuration using Pydantic settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database
    database_url: str = "postgresql+asyncpg://localhost:5432/inventory"

    # Upstream inventory API
    upstream_base_url: str = "https://auctionsapi.com/api"
    upstream_items_path: str = "/items"
    upstream_api_key: str | None = None
    upstream_api_key_required: bool = False
    upstream_page_size: int = 200
    upstream_timeout_seconds: float = 30.0
    upstream_probe_timeout_seconds: float = 10.0
    upstream_requests_per_second: float = 2.0  # 0 disables client-side throttling

    # Ingestion settings
    checkpoint_path: str = "/tmp/inventory-sync-checkpoint.json"
    checkpoint_every_pages: int = 5
    checkpoint_max_age_hours: int = 24
    max_page_attempts: int = 3
    completion_page_buffer: int = 5
    empty_page_threshold: int = 25
    completion_ratio: float = 0.95
    upsert_chunk_size: int = 50
    upsert_concurrency: int = 4
    max_pages_per_run: int | None = None
    stale_run_minutes: int = 30
    sync_target_id: str = "inventory-sync-main"
    sync_interval_minutes: int = 60
    scheduler_enabled: bool = True

    # Retry delays (milliseconds)
    network_retry_delay_ms: int = 1500
    timeout_retry_delay_ms: int = 2000
    server_retry_delay_ms: int = 4000
    rate_limit_retry_delay_ms: int = 3000
    max_retry_delay_ms: int = 15000

    # Query settings
    default_page_size: int = 50
    max_page_size: int = 200

    # API settings
    api_v1_prefix: str = "/api/v1"
    cors_origins: list[str] = ["*"]  # Restrict in production
    rate_limit_per_minute: int = 60

    # Environment
    debug: bool = False


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
