"""Configuration management using Pydantic Settings."""

import logging
from functools import lru_cache
from typing import Literal

from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Supabase Configuration
    SUPABASE_URL: str = ""
    SUPABASE_SERVICE_ROLE_KEY: SecretStr = SecretStr("")

    # Tavus webhook authentication
    TAVUS_WEBHOOK_SECRET: SecretStr = SecretStr("")  # HMAC-SHA256 shared secret
    TAVUS_WEBHOOK_TOKEN: SecretStr = SecretStr("")  # Static ?t= callback URL token
    WEBHOOK_ALLOW_UNAUTHENTICATED: bool = False  # Local development only
    WEBHOOK_TIMESTAMP_TOLERANCE_SECONDS: int = 300  # 0 disables the replay window

    # Idempotency ledger
    IDEMPOTENCY_RETENTION_DAYS: int | None = None  # None keeps ledger rows forever
    IDEMPOTENCY_FAIL_OPEN: bool = False

    # Raw payload sanitization bounds
    SANITIZE_MAX_ARRAY_LEN: int = 50
    SANITIZE_MAX_OBJECT_KEYS: int = 100

    # Demo video playback
    DEMO_VIDEO_BUCKET: str = "demo-videos"
    SIGNED_URL_TTL_SECONDS: int = 3600
    REALTIME_BROADCAST_ENABLED: bool = True
    REALTIME_BROADCAST_TIMEOUT_SECONDS: float = 5.0

    # Application Settings
    APP_ENV: Literal["development", "staging", "production"] = "development"

    # Logging
    LOG_FORMAT: Literal["text", "json"] = "text"
    LOG_LEVEL: str = "INFO"

    # CORS Configuration
    CORS_ORIGINS: str = "http://localhost:3000"

    @field_validator("SUPABASE_URL")
    @classmethod
    def validate_supabase_url(cls, v: str) -> str:
        """Validate that SUPABASE_URL is a valid URL."""
        if v and not v.startswith(("http://", "https://")):
            raise ValueError("SUPABASE_URL must start with http:// or https://")
        return v.rstrip("/") if v else v

    @field_validator("IDEMPOTENCY_RETENTION_DAYS")
    @classmethod
    def validate_retention_days(cls, v: int | None) -> int | None:
        """Reject non-positive retention windows."""
        if v is not None and v <= 0:
            raise ValueError("IDEMPOTENCY_RETENTION_DAYS must be a positive number of days")
        return v

    @property
    def cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.APP_ENV == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.APP_ENV == "production"

    @property
    def webhook_auth_configured(self) -> bool:
        """Check if either webhook secret or callback token is set."""
        return bool(
            self.TAVUS_WEBHOOK_SECRET.get_secret_value().strip()
            or self.TAVUS_WEBHOOK_TOKEN.get_secret_value().strip()
        )

    def validate_startup(self) -> None:
        """Validate that all required secrets are configured.

        Production deployments must authenticate webhooks: either a shared
        secret or a callback token is required, and the unauthenticated
        development mode is refused.

        Raises:
            ValueError: If any required secret is missing or the webhook
                authentication posture is unsafe for the environment.
        """
        required_secrets = {
            "SUPABASE_URL": self.SUPABASE_URL,
            "SUPABASE_SERVICE_ROLE_KEY": self.SUPABASE_SERVICE_ROLE_KEY.get_secret_value(),
        }
        missing = [name for name, value in required_secrets.items() if not value]
        if missing:
            raise ValueError(f"Required secrets are missing or empty: {', '.join(missing)}")

        if self.is_production:
            if self.WEBHOOK_ALLOW_UNAUTHENTICATED:
                raise ValueError("WEBHOOK_ALLOW_UNAUTHENTICATED cannot be enabled in production")
            if not self.webhook_auth_configured:
                raise ValueError(
                    "TAVUS_WEBHOOK_SECRET or TAVUS_WEBHOOK_TOKEN is required in production"
                )

        if self.WEBHOOK_ALLOW_UNAUTHENTICATED and not self.webhook_auth_configured:
            logger.warning(
                "Webhook authentication disabled - accepting unsigned requests",
                extra={"app_env": self.APP_ENV},
            )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings instance with validated configuration.

    Raises:
        ValueError: If required secrets are missing.
    """
    settings = Settings()
    settings.validate_startup()
    return settings


# Global settings instance - import this for easy access
settings = get_settings()
