"""Application configuration using pydantic-settings."""

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Supabase API Keys
    supabase_url: str
    supabase_service_role_key: str  # Bypasses RLS, used by webhooks and cron
    supabase_publishable_key: str  # Anon/publishable key for client requests

    # Plaid
    plaid_client_id: str
    plaid_secret: str
    plaid_env: str = "sandbox"  # sandbox, development, production
    plaid_webhook_secret: str | None = None  # HMAC key for webhook signatures
    verify_webhook_signature: bool = True  # Forced on in production

    # App
    app_name: str = "SplitSync"
    app_env: str = "development"
    debug: bool = True

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # API
    api_v1_prefix: str = "/app/v1"

    # Encryption
    encryption_key: str | None = None  # Fernet key the access tokens were encrypted with

    # Sync
    sync_page_size: int = 500  # Plaid caps /transactions/sync at 500
    sync_page_delay_seconds: float = 0.1
    batch_max_operations: int = 500  # Per-commit operation limit
    webhook_sync_min_interval_hours: float = 4.0
    outflow_lookback_months: int = 3
    outflow_lookahead_months: int = 1
    default_currency: str = "USD"

    # Cron Jobs
    enable_cron_jobs: bool = True  # Enable/disable scheduled background tasks

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env == "production"

    @property
    def should_verify_webhooks(self) -> bool:
        """Signature checks can only be switched off outside production."""
        return self.is_production or self.verify_webhook_signature


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
