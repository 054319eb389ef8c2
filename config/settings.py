"""Configuration management using pydantic-settings."""
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Settings for the process-default cache, fetch pool and metric batcher."""

    # Cache settings
    cache_default_ttl_seconds: float = 60.0

    # Fetch coordination
    fetch_max_workers: int = 4
    # Off by default: concurrent misses for one key each call their producer
    fetch_dedupe_in_flight: bool = False
    fetch_coalesce_timeout: float = 30.0

    # Telemetry batching
    metrics_enabled: bool = True
    metrics_batch_size: int = 5
    metrics_flush_interval_seconds: float = 10.0

    # Remote metric sink (PostgREST-style endpoint)
    metrics_sink_url: Optional[str] = None
    metrics_sink_api_key: Optional[str] = None
    metrics_table: str = "performance_logs"
    metrics_request_timeout: float = 10.0
    metrics_principal_id: Optional[str] = None

    # Local SQL sink
    database_url: str = "sqlite:///./dashstate.db"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
