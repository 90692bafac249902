"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import sys
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Deployment
    environment: Literal["development", "test", "staging", "production"] = "development"

    # Entitlement provider selection. test_mode grants unlimited access to every
    # user and is refused outright when environment == "production".
    entitlement_provider: Literal["database", "test_mode"] = "database"

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_read_url: str | None = None  # Optional read replica
    database_pool_size: int = 10
    database_max_overflow: int = 5
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600

    # Upper bound for any single record store call
    store_timeout_seconds: float = 5.0

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "ProofAI Entitlements API"
    api_version: str = "0.1.0"
    api_description: str = "Entitlement resolution and usage metering for ProofAI"

    # Identity provider - HS256 secret shared with the auth backend
    auth_jwt_secret: str = ""
    auth_jwt_audience: str = "authenticated"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "proofai-entitlements"

    # Payment Provider - Stripe
    stripe_api_key: str = ""  # sk_test_... or sk_live_...
    stripe_webhook_secret: str = ""  # whsec_...
    stripe_timeout_seconds: int = 10
    stripe_max_network_retries: int = 2
    checkout_success_url: str = "https://proofai.app/checkout/success"
    checkout_cancel_url: str = "https://proofai.app/checkout/cancel"

    # Stripe price ids for subscription plans
    stripe_price_community: str = ""
    stripe_price_self_defender: str = ""
    stripe_price_mission_partner: str = ""
    stripe_price_business: str = ""

    # Stripe price ids for one-time packs
    stripe_price_emergency_pack: str = ""
    stripe_price_court_certification: str = ""

    # Plans and packs
    emergency_pack_credits: int = 10
    default_billing_period_days: int = 30

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
        This prevents silent failures that only manifest at runtime.
        """
        errors: list[str] = []

        # DATABASE_URL is absolutely required
        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        if self.environment == "production" and self.entitlement_provider == "test_mode":
            errors.append("ENTITLEMENT_PROVIDER=test_mode cannot be used in production")

        if self.environment == "production" and not self.auth_jwt_secret:
            errors.append("AUTH_JWT_SECRET is required in production")

        if self.emergency_pack_credits <= 0:
            errors.append("EMERGENCY_PACK_CREDITS must be positive")

        # If we have errors, fail immediately with clear messaging
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
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def subscription_price_ids(self) -> dict[str, str]:
        """Configured Stripe price id -> plan name (unset prices are skipped)."""
        pairs = [
            (self.stripe_price_community, "community"),
            (self.stripe_price_self_defender, "self_defender"),
            (self.stripe_price_mission_partner, "mission_partner"),
            (self.stripe_price_business, "business"),
        ]
        return {price_id: plan for price_id, plan in pairs if price_id}


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
