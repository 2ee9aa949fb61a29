"""
Shared configuration management for the chat API layer.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="CHAT_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Backend-as-a-service (PostgREST + auth)
    backend_url: str = Field(default="http://localhost:54321")
    backend_api_key: Optional[str] = Field(default=None)
    backend_timeout: float = Field(default=10.0)

    # Response cache
    cache_max_size: int = Field(default=500, ge=1)
    cache_default_ttl: float = Field(default=300, gt=0)
    cache_cleanup_interval: float = Field(default=60, gt=0)
    sessions_cache_ttl: float = Field(default=30, gt=0)
    messages_cache_ttl: float = Field(default=60, gt=0)
    permission_cache_ttl: float = Field(default=60, gt=0)

    # Pagination
    sessions_page_size: int = Field(default=20, ge=1)
    sessions_max_page_size: int = Field(default=50, ge=1)
    messages_page_size: int = Field(default=50, ge=1)
    messages_max_page_size: int = Field(default=100, ge=1)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
