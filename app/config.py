"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import sys
from decimal import Decimal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_read_url: str | None = None  # Optional read replica
    database_pool_size: int = 25
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "EZ Casino Ledger API"
    api_version: str = "0.1.0"
    api_description: str = "Credit ledger, PayPal checkout and affiliate commissions"

    # Browser origins allowed to call the API with credentials (JSON list in env)
    cors_allowed_origins: list[str] = ["http://localhost:3000"]
    # Reverse proxies whose X-Forwarded-* headers are trusted
    forwarded_allow_ips: str = "127.0.0.1"

    # Auth - bearer tokens are issued by the platform's auth service
    auth_jwt_secret: str = ""
    auth_jwt_algorithm: str = "HS256"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "ezcasino-ledger-api"

    # Payment Provider - PayPal
    paypal_client_id: str = ""
    paypal_client_secret: str = ""
    paypal_mode: str = "sandbox"  # sandbox or live
    paypal_webhook_id: str = ""  # Empty disables signature verification
    paypal_timeout_seconds: float = 15.0
    paypal_brand_name: str = "EZ Casino Affiliates"

    # Public URL used for gateway return/cancel redirects
    public_base_url: str = "http://localhost:3000"

    # Ledger
    ledger_max_retries: int = 3
    default_commission_rate: Decimal = Decimal("10.00")

    # Notifications
    notifications_enabled: bool = True

    # Apply pending Alembic migrations during application startup
    run_migrations_on_startup: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The app MUST NOT start if critical config is missing.
        """
        errors: list[str] = []

        # DATABASE_URL is absolutely required
        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        if self.paypal_mode not in ("sandbox", "live"):
            errors.append(f"PAYPAL_MODE must be 'sandbox' or 'live', got: {self.paypal_mode}")

        if self.ledger_max_retries < 1:
            errors.append("LEDGER_MAX_RETRIES must be at least 1")

        if not Decimal("0") <= self.default_commission_rate <= Decimal("100"):
            errors.append("DEFAULT_COMMISSION_RATE must be between 0 and 100")

        if "*" in self.cors_allowed_origins:
            errors.append("CORS_ALLOWED_ORIGINS must list origins explicitly, not '*'")

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self

    @property
    def read_database_url(self) -> str:
        """Get read database URL (fallback to primary if no replica)."""
        return self.database_read_url or self.database_url

    @property
    def paypal_base_url(self) -> str:
        """PayPal REST base URL for the configured mode."""
        if self.paypal_mode == "live":
            return "https://api-m.paypal.com"
        return "https://api-m.sandbox.paypal.com"


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
