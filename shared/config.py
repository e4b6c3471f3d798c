"""
Shared configuration management for the WCAGAI Access Layer.
"""

from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from shared.errors import ConfigurationError


DEVELOPMENT_ENVIRONMENTS = ("local", "development", "test")

# Documented fallback key, only ever used when the service runs in a
# development environment without ACCESS_TOKEN_SIGNING_SECRET.
DEVELOPMENT_SIGNING_SECRET = "wcagai-dev-only-signing-key"


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="ACCESS_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    # Development fallbacks need an explicit ACCESS_ENV.
    env: str = Field(default="production", description="Deployment environment")
    log_level: str = Field(default="info")

    # External services
    redis_url: str = Field(default="redis://localhost:6379/0")
    rate_limit_backend: str = Field(default="memory", description="memory or redis")
    credit_store_backend: str = Field(default="memory", description="memory or redis")

    # Security
    token_signing_secret: Optional[str] = Field(default=None)

    # Payment provider
    stripe_secret_key: Optional[str] = Field(default=None)
    stripe_webhook_secret: Optional[str] = Field(default=None)

    # Completion provider
    xai_api_key: Optional[str] = Field(default=None)
    xai_base_url: str = Field(default="https://api.x.ai/v1/chat/completions")
    xai_model: str = Field(default="grok-beta")
    xai_timeout_seconds: float = Field(default=15.0)
    ai_batch_size: int = Field(default=5)
    ai_batch_delay_seconds: float = Field(default=1.0)

    @property
    def is_development(self) -> bool:
        """True when running in an environment that tolerates dev fallbacks."""
        return self.env.lower() in DEVELOPMENT_ENVIRONMENTS

    def missing_secrets(self) -> List[str]:
        """Names of the required secrets that are not configured."""
        required = {
            "ACCESS_TOKEN_SIGNING_SECRET": self.token_signing_secret,
            "ACCESS_STRIPE_SECRET_KEY": self.stripe_secret_key,
            "ACCESS_STRIPE_WEBHOOK_SECRET": self.stripe_webhook_secret,
            "ACCESS_XAI_API_KEY": self.xai_api_key,
        }
        return [name for name, value in required.items() if not (value or "").strip()]

    def validate_secrets(self) -> None:
        """Fail fast when required secrets are absent outside development."""
        if self.is_development:
            return
        missing = self.missing_secrets()
        if missing:
            raise ConfigurationError(
                "Required secrets are not configured",
                details={"missing": missing, "env": self.env}
            )

    def signing_secret(self) -> str:
        """Return the token signing key, falling back only in development."""
        if self.token_signing_secret:
            return self.token_signing_secret
        if self.is_development:
            return DEVELOPMENT_SIGNING_SECRET
        raise ConfigurationError(
            "Token signing secret is not configured",
            details={"missing": ["ACCESS_TOKEN_SIGNING_SECRET"], "env": self.env}
        )


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
