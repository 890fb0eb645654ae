"""
Shared configuration management for the Access Layer Auth Service.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


AZURE_COMMON_DISCOVERY_URL = (
    "https://login.microsoftonline.com/common/.well-known/openid-configuration"
)


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="ACCESS_",
        env_file=".env",
        case_sensitive=False,
        extra="allow",
    )

    # Environment
    env: str = "local"
    log_level: str = "info"

    # Identity provider
    audience: Optional[str] = None
    discovery_url: str = AZURE_COMMON_DISCOVERY_URL
    http_timeout: float = Field(default=10.0, gt=0)

    # Signing key cache
    jwks_cache_hours: int = Field(default=24, ge=0)
    jwks_retry_enabled: bool = True
    jwks_retry_window_seconds: int = Field(default=3600, gt=0)

    # Claims validation
    token_leeway_seconds: int = Field(default=60, ge=0)


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
