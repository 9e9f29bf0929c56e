"""
Shared configuration management for the admission gateway.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="ACCESS_",
        env_file=".env",
        case_sensitive=False,
        extra="allow",
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # External services
    redis_url: str = Field(default="redis://localhost:6379/0")
    postgres_dsn: str = Field(default="postgres://localhost:5432/access")
    auth_service_url: str = Field(default="http://localhost:8010")

    # Store round-trips are not time-boxed upstream; bound them here
    store_timeout_seconds: float = Field(default=2.0, gt=0)
    postgres_min_pool_size: int = Field(default=2, ge=1)
    postgres_max_pool_size: int = Field(default=10, ge=1)

    # Credentials
    demo_key: Optional[str] = Field(default=None)
    demo_organization_id: Optional[str] = Field(default=None)
    demo_template_name: str = Field(default="DEMO")
    key_encryption_secret: Optional[str] = Field(default=None)

    # Rate limiting
    rpm_window_seconds: int = Field(default=60, gt=0)
    rpm_key_prefix: str = Field(default="rpm")
    plan_cache_prefix: str = Field(default="planId")

    # Key auth circuit breaker
    auth_failure_threshold: int = Field(default=3, ge=1)
    auth_recovery_timeout: float = Field(default=30.0, gt=0)


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
