"""Configuration management using pydantic-settings."""
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Item-groups backend
    backend_base_url: str = "http://localhost:8000/api"
    backend_timeout_seconds: float = 30.0
    backend_api_key: Optional[str] = None

    # Request coalescing cache
    coalescer_cache_ttl_seconds: float = 300.0
    # Window the first request for a key is held so near-simultaneous callers join it
    coalescer_debounce_seconds: float = 0.01
    coalescer_max_entries: int = 200
    coalescer_logging: bool = False

    # Offline mutation queue
    offline_max_replay_attempts: int = 3

    # Connectivity detection
    # Disabled: the manual source is used and POST /network/status drives it
    network_probe_enabled: bool = True
    network_probe_interval_seconds: float = 5.0
    network_probe_path: str = "health"
    network_online_debounce_seconds: float = 1.0

    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
