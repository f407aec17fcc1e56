# Configuration management

import os
from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings  # type: ignore


def default_concurrency() -> int:
    """Available parallelism minus one, never below one."""
    if hasattr(os, "sched_getaffinity"):
        available = len(os.sched_getaffinity(0))
    else:
        available = os.cpu_count() or 1
    return max(1, available - 1)


class Settings(BaseSettings):
    # Database
    database_url: str = "sqlite:///./memorygrove.db"
    db_pool_size: int = 10
    db_max_overflow: int = 20

    # Storage
    media_path: str = "./media"
    queue_path: str = "./queue"

    # Application
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    debug: bool = False
    log_level: str = "INFO"
    log_json: bool = True

    # Job queue
    queue_poll_interval_ms: int = 500
    queue_concurrency: int = Field(default_factory=default_concurrency)
    queue_retention_hours: float = 24.0
    queue_sweep_interval_seconds: float = 3600.0

    # Media Processing
    thumb_big_size: int = 400
    thumb_small_size: int = 200
    webp_quality: int = 90
    thumb_quality: int = 80
    heic_jpeg_quality: int = 92

    # Memory date clustering
    cluster_gap_days: float = 5.0
    cluster_max_duration_days: float = 20.0

    # Content classification (Google Cloud Vision)
    vision_enabled: bool = False
    vision_credentials_path: Optional[str] = None
    classifier_confidence_threshold: float = 0.6

    # Reverse geocoding
    geocoding_enabled: bool = False
    geocoding_url: str = "https://nominatim.openstreetmap.org/reverse"
    geocoding_user_agent: str = "MemoryGrove/1.0"
    geocoding_timeout: float = 5.0

    # Notifications
    notifications_backend: str = "log"  # log or db

    # Security
    allowed_origins: List[str] = [
        "http://localhost:3000", "http://localhost:8000"]

    # Observability
    metrics_enabled: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    return Settings()
