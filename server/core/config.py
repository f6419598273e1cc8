"""Environment-driven configuration with Pydantic v2."""

from typing import List, Literal, Optional
from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings driven entirely by environment variables.

    All durations are expressed in seconds.
    """

    # Server Configuration
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3010, ge=1024, le=65535)
    debug: bool = Field(default=False)
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])

    # Task Queue
    queue_max_size: int = Field(default=100, ge=1, le=10000)
    queue_job_ttl: float = Field(default=30 * 60, gt=0)  # 30 minutes
    queue_job_timeout: float = Field(default=60.0, gt=0, le=900)
    queue_drain_delay: float = Field(default=1.0, ge=0, le=60)
    queue_default_priority: int = Field(default=10)

    # Cache Configuration
    cache_ttl: float = Field(default=10 * 60, gt=0)
    cache_stale_time: float = Field(default=5 * 60, ge=0)
    cache_max_entries: int = Field(default=1000, ge=1)
    cache_key_prefix: str = Field(default="tumuai:v1:")
    cache_clear_token: Optional[str] = Field(default=None)

    # Persistent cache backing (Redis when enabled, memory otherwise)
    redis_enabled: bool = Field(default=False)
    redis_url: Optional[str] = Field(default=None)
    persistent_prefix: str = Field(default="unified_cache")

    # Periodic cleanup
    cleanup_enabled: bool = Field(default=True)
    cleanup_interval: float = Field(default=5 * 60, ge=1)

    # Supabase (Postgres REST + Storage)
    supabase_url: str = Field(default="")
    supabase_service_key: str = Field(default="")

    # Screenshot capture
    screenshot_bucket: str = Field(default="tool-screenshots")
    screenshot_api_url: str = Field(
        default="https://image.thum.io/get/noanimate/width/{width}/{target}"
    )
    screenshot_width: int = Field(default=1200, ge=320, le=3840)
    screenshot_max_bytes: int = Field(default=int(9.5 * 1024 * 1024), ge=1024)
    http_timeout: float = Field(default=8.0, gt=0, le=120)

    # Duplicate URL detection
    duplicate_cache_ttl: float = Field(default=60 * 60, gt=0)  # 1 hour

    # Logging
    log_level: str = Field(default="INFO")
    log_format: Literal["json", "console"] = Field(default="json")
    log_file: Optional[str] = Field(default=None)

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.debug

    @property
    def supabase_configured(self) -> bool:
        """Check if Supabase credentials are present."""
        return bool(self.supabase_url and self.supabase_service_key)

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
        "env_parse_none_str": "none",
    }
