"""
Shared configuration management for the Homebase API Security Gateway.
"""

from typing import Optional

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEV_CSRF_SECRET = "default-csrf-secret-change-in-production"


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="HOMEBASE_",
        env_file=".env",
        case_sensitive=False,
        extra="allow",
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # External services
    redis_url: str = Field(default="redis://localhost:6379/0")
    postgres_dsn: str = Field(default="postgres://localhost:5432/homebase")

    # Identity service
    auth_service_url: str = Field(default="http://localhost:8010")
    auth_timeout_seconds: float = Field(default=5.0, gt=0)


class SecuritySettings(BaseConfig):
    """Settings for the security gateway service."""

    service_name: str = Field(default="security")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    # CSRF
    csrf_secret: SecretStr = Field(default=SecretStr(DEV_CSRF_SECRET))
    csrf_token_max_age_seconds: int = Field(default=24 * 60 * 60, gt=0)

    # Rate limiting
    rate_limit_backend: str = Field(default="memory", pattern="^(memory|redis|postgres)$")
    rate_limit_store_timeout_seconds: float = Field(default=0.5, gt=0)
    rate_limits_file: Optional[str] = Field(default=None)

    # Security monitor
    monitor_capacity: int = Field(default=1000, gt=0)

    @model_validator(mode="after")
    def _require_real_secret(self) -> "SecuritySettings":
        if self.env not in ("local", "test") and self.csrf_secret.get_secret_value() == DEV_CSRF_SECRET:
            raise ValueError("HOMEBASE_CSRF_SECRET must be set outside local/test environments")
        return self


def get_settings(**overrides) -> SecuritySettings:
    """Get configuration for the security service."""
    return SecuritySettings(**overrides)
