from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional
import socket


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Loading priority (highest to lowest):
    1. Environment variables
    2. .env file
    3. Default values below
    """

    # Environment
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"

    # Application
    app_name: str = "linkflow"
    app_version: str = "1.0.0"

    # Server
    host: str = "127.0.0.1"
    port: int = 8000

    # Short code allocation
    base_url: str = "http://127.0.0.1:8000"
    short_code_length: int = 7  # 62^7 candidates
    max_allocation_attempts: int = 10
    default_ttl_seconds: Optional[int] = 31536000  # 1 year, None disables expiry

    # Code store settings
    code_store_backend: str = "redis"  # Options: "redis", "memory"
    redis_url: str = "redis://localhost:6379/0"

    # Event channel settings
    event_channel_backend: str = "redis_streams"  # Options: "redis_streams", "memory"
    queue_name: str = "q.click-events"
    queue_consumer_group: str = "click_ingestors"
    consumer_name: str = f"ingestor-{socket.gethostname()}"
    consume_block_ms: int = 1000
    claim_idle_ms: int = 60000  # Reclaim deliveries of consumers silent for a minute

    # Resolver-side publishing
    publish_buffer_size: int = 1000
    publish_overflow_policy: str = "drop_new"  # Options: "drop_new", "drop_oldest"

    # Connection lifecycle
    connect_attempts: int = 5
    retry_delay_seconds: float = 5.0
    health_check_interval: float = 5.0

    # Analytics store
    analytics_database_url: str = "sqlite:///./analytics.db"
    ingest_deduplicate: bool = True

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


# Create settings instance
settings = Settings()
