"""
Settings for the optimistic sync layer.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SyncSettings(BaseSettings):
    """Environment-backed settings for caches, queues, mirrors and remotes."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="TASKPAD_",
        extra="ignore",
    )

    # Sync queue / mutator timing
    debounce_seconds: float = Field(default=0.1, ge=0)
    create_error_grace_seconds: float = Field(default=3.0, ge=0)
    remote_timeout_seconds: float = Field(default=10.0, gt=0)
    max_retries: int = Field(default=1, ge=0)
    retry_backoff_seconds: float = Field(default=0.5, ge=0)

    # Local mirror
    mirror_backend: Literal["memory", "file", "redis"] = Field(default="file")
    mirror_dir: str = Field(default="data/mirror")
    redis_url: Optional[str] = Field(default=None)
    redis_key_prefix: str = Field(default="taskpad")

    # Remote store
    use_in_memory_remote: bool = Field(default=False)
    firebase_project_id: Optional[str] = Field(default=None)


@lru_cache(maxsize=1)
def get_sync_settings() -> SyncSettings:
    """Return cached settings instance."""
    return SyncSettings()
