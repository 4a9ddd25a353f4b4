"""
Shared configuration management for the workspace sync client.
"""

from typing import Dict, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings.

    Every field can be overridden from the environment with the ``SYNC_``
    prefix, e.g. ``SYNC_API_BASE_URL`` or ``SYNC_PERSIST_DEBOUNCE_SECONDS``.
    """

    model_config = SettingsConfigDict(
        env_prefix="SYNC_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Backend
    api_base_url: str = Field(default="http://localhost:8000")
    request_timeout_seconds: float = Field(default=10.0)
    redis_url: Optional[str] = Field(default=None)
    local_state_namespace: str = Field(default="sync")

    # Cache TTLs (seconds)
    workspaces_ttl_seconds: float = Field(default=300.0)
    context_ttl_seconds: float = Field(default=300.0)
    datasources_ttl_seconds: float = Field(default=300.0)
    sessions_ttl_seconds: float = Field(default=120.0)
    messages_ttl_seconds: float = Field(default=60.0)

    # Write-back and paging
    persist_debounce_seconds: float = Field(default=0.5)
    message_page_size: int = Field(default=20)

    # Gateway resilience
    gateway_failure_threshold: int = Field(default=3)
    gateway_recovery_timeout: float = Field(default=30.0)
    gateway_retry_attempts: int = Field(default=3)

    def cache_ttls(self) -> Dict[str, float]:
        """TTL per cached resource type."""
        return {
            "workspaces": self.workspaces_ttl_seconds,
            "context": self.context_ttl_seconds,
            "datasources": self.datasources_ttl_seconds,
            "sessions": self.sessions_ttl_seconds,
            "messages": self.messages_ttl_seconds,
        }


class SyncConfig(BaseConfig):
    """Client-specific configuration."""

    client_name: str = "workspace-sync"


def get_config(**overrides) -> SyncConfig:
    """Get configuration for the sync client."""
    return SyncConfig(**overrides)
