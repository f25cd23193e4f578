from typing import Optional, List
from pydantic_settings import BaseSettings, SettingsConfigDict

from common.core.constants import Environment, LockProvider


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Environment Profile
    environment: Environment = Environment.LOCAL

    # API Settings
    app_name: str = "billing-reconciler"
    api_version: str = "v1"
    debug: bool = False

    # Database Components
    db_user: str = "postgres"
    db_password: str = "postgres"
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "billing"
    db_use_nullpool: bool = (
        False  # True for workers (sequential), False for API (concurrent)
    )
    db_pool_size: int = 10
    db_pool_overflow: int = 5

    @property
    def database_url(self) -> str:
        """Construct database URL from components."""
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    # Redis
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: Optional[str] = None
    redis_db: int = 0

    @property
    def redis_connection_url(self) -> str:
        """Construct Redis URL from components."""
        if self.redis_password:
            return f"redis://:{self.redis_password}@{self.redis_host}:{self.redis_port}/{self.redis_db}"
        else:
            return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"

    # OpenTelemetry
    otel_service_name: str = "billing-reconciler"
    otel_service_version: str = "0.1.0"

    # Axiom (export disabled when no token is configured)
    axiom_token: Optional[str] = None
    axiom_dataset: Optional[str] = None

    # Billing - Stripe (payments)
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_api_timeout_seconds: float = 10.0
    stripe_webhook_tolerance_seconds: int = 300

    # Checkout redirect targets
    frontend_url: str = "http://localhost:3000"

    # Reconciliation
    reconciliation_max_attempts: int = 3
    reconciliation_lock_ttl_seconds: int = 30
    reconciliation_lock_timeout_seconds: float = 5.0
    pending_event_ttl_hours: int = 24
    subscription_expiry_grace_hours: int = 6
    free_usage_period_days: int = 30
    sweep_interval_seconds: float = 900.0

    # Revenue metrics
    churn_window_months: int = 3

    # Environment-aware properties
    @property
    def lock_provider(self) -> LockProvider:
        """Auto-select lock provider based on environment."""
        return (
            LockProvider.MEMORY
            if self.environment == Environment.LOCAL
            else LockProvider.REDIS
        )

    @property
    def rate_limit_storage_uri(self) -> str:
        """Rate limiter storage - shared Redis outside local development."""
        if self.environment == Environment.LOCAL:
            return "memory://"
        return self.redis_connection_url

    @property
    def cors_allowed_origins(self) -> List[str]:
        """Auto-select CORS origins based on environment."""
        if self.environment == Environment.LOCAL:
            return [
                "http://localhost:3000",
                "http://localhost:3001",
            ]
        return [self.frontend_url]


settings = Settings()
