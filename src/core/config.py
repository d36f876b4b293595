"""Application configuration management using Pydantic Settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    Required settings will raise validation errors if not provided.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="topup-fulfillment", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/staging/production)")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Server
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")
    public_base_url: str = Field(
        default="http://localhost:8080",
        description="Externally reachable base URL of this service (used to build callback URLs)",
    )

    # CORS
    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="Comma-separated list of allowed CORS origins",
    )

    # Supabase
    supabase_url: str = Field(..., description="Supabase project URL")
    supabase_secret_key: str = Field(..., description="Supabase secret key for backend operations")

    # Internal callers (payment flow, admin console)
    internal_api_key: str = Field(default="", description="Shared key required in X-Internal-Key for fulfillment endpoints")

    # Recharge provider
    provider_name: str = Field(default="g2bulk", description="Provider name used to look up credentials")
    provider_api_url: str = Field(default="https://api.g2bulk.com/v1", description="Provider REST API base URL")
    provider_timeout_seconds: float = Field(default=30.0, description="Timeout for a single provider request")
    provider_webhook_secret: str = Field(default="", description="Shared secret used to authenticate provider callbacks")
    provider_callback_url: str = Field(default="", description="Callback URL sent to the provider (derived when empty)")

    # Notifications (Telegram)
    telegram_bot_token: str = Field(default="", description="Telegram bot token for order notifications")
    telegram_chat_id: str = Field(default="", description="Telegram chat receiving order notifications")
    telegram_api_url: str = Field(default="https://api.telegram.org", description="Telegram Bot API base URL")
    notification_timeout_seconds: float = Field(default=10.0, description="Timeout for a single notification request")
    notification_queue_size: int = Field(default=1000, description="Maximum queued notifications before dropping")

    # Product resolution
    product_cache_ttl_seconds: int = Field(default=300, description="TTL of cached provider product records")

    # Reconciliation
    reconcile_stale_after_seconds: int = Field(
        default=300,
        description="Processing orders untouched for this long are eligible for polling and forced retry",
    )
    reconcile_batch_size: int = Field(default=50, description="Maximum orders checked per sweep")
    reconcile_request_delay_seconds: float = Field(default=0.2, description="Pause between provider status calls in a sweep")
    reconcile_sweep_enabled: bool = Field(default=False, description="Run the periodic reconciliation sweep in-process")
    reconcile_sweep_interval_seconds: int = Field(default=120, description="Interval between in-process sweeps")

    # Fulfillment policy
    voucher_empty_delivery_policy: Literal["complete_flagged", "manual"] = Field(
        default="complete_flagged",
        description="How to treat an accepted voucher purchase that delivered no codes",
    )

    @model_validator(mode="after")
    def set_provider_callback_default(self) -> "Settings":
        """Derive the provider callback URL from the public base URL if not set."""
        if not self.provider_callback_url:
            self.provider_callback_url = f"{self.public_base_url.rstrip('/')}/api/v1/webhooks/provider"
        return self

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins string into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"

    @property
    def telegram_configured(self) -> bool:
        """Check if Telegram notifications can be sent."""
        return bool(self.telegram_bot_token and self.telegram_chat_id)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings: Application settings instance.

    Note:
        Settings are cached using lru_cache for performance.
        Call get_settings.cache_clear() to reload settings.
    """
    return Settings()
