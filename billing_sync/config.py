from __future__ import annotations

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "Billing Sync"
    app_version: str = "0.1.0"
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"

    # Database
    database_url: str | None = None
    database_auto_create: bool = False
    db_pool_min_size: int = 1
    db_pool_max_size: int = 5

    # Stripe
    stripe_secret_key: str | None = None
    stripe_webhook_secret: str | None = None
    stripe_api_version: str = "2023-10-16"
    stripe_webhook_tolerance_seconds: int = 300

    # Hosted page redirects
    client_url: str = "http://localhost:3000"

    # Identity (Supabase Auth)
    supabase_url: str | None = None
    supabase_anon_key: str | None = None
    identity_timeout_seconds: float = 5.0

    # Plan catalog overrides
    price_basic_monthly: str = "price_basic_monthly"
    price_pro_monthly: str = "price_pro_monthly"
    price_enterprise_monthly: str = "price_enterprise_monthly"
    price_basic_yearly: str = "price_basic_yearly"
    price_pro_yearly: str = "price_pro_yearly"
    price_enterprise_yearly: str = "price_enterprise_yearly"
    billing_enforce_price_catalog: bool = False

    # Security
    cors_origins: list[str] = []  # Empty by default for security
    trusted_hosts: list[str] = ["*"]

    # Sentry
    sentry_dsn: str | None = None

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Metrics
    metrics_backend: str = "stdout"
    metrics_namespace: str = "billing"
    metrics_disable: bool = False
    metrics_sample_rate: float = 1.0
    metrics_statsd_host: str = "127.0.0.1"
    metrics_statsd_port: int = 8125
    metrics_schema_version: str = "billing.v1"

    @property
    def checkout_success_url(self) -> str:
        return f"{self.client_url.rstrip('/')}/subscriptions?success=true"

    @property
    def checkout_cancel_url(self) -> str:
        return f"{self.client_url.rstrip('/')}/subscriptions?canceled=true"

    @property
    def portal_return_url(self) -> str:
        return f"{self.client_url.rstrip('/')}/subscriptions"

    model_config = ConfigDict(env_file=".env", case_sensitive=False)


settings = Settings()
