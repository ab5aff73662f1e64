"""
Runtime settings using Pydantic.

Provides environment-based configuration loading with STRATUM_ prefix.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="STRATUM_",
    )

    # Resource monitor (the engine endpoint)
    monitor_url: str = "http://127.0.0.1:50051"

    # Program identity
    project: str = "project"
    stack: str = "dev"

    # Preview runs leave unresolved properties unknown
    dry_run: bool = False

    # Issue resource operations one at a time, in declaration order
    serialize: bool = True

    # Debug
    excessive_debug_output: bool = False
    log_level: str = "INFO"
    # JSON lines by default; false renders human-readable console output
    log_json: bool = True

    # HTTP client settings
    http_timeout: float = 30.0
    http_max_retries: int = 3
    http_retry_backoff_factor: float = 0.5


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
