"""
Shared configuration management for the clinic permissions engine.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="PERMISSIONS_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Effective-set cache
    freshness_seconds: float = Field(default=300.0, ge=0)

    # Reserved identifiers
    protected_group_name: str = Field(default="super_admin", min_length=1)

    # Snapshot loading
    snapshot_retry_attempts: int = Field(default=3, ge=1)
    snapshot_retry_base_delay: float = Field(default=0.5, ge=0)
    snapshot_retry_max_delay: float = Field(default=5.0, ge=0)

    # Statistics
    stats_top_n: int = Field(default=5, ge=1)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str = "permissions"


def get_config(service_name: str = "permissions", **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, **overrides)
