"""Application settings and configuration."""

import sys
from decimal import Decimal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_INSECURE_ADMIN_KEYS = {"change-me-in-production", "admin", "secret"}


class Settings(BaseSettings):
    """Application configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "homebase"
    env: str = "development"
    log_level: str = "INFO"
    log_format: str = "console"  # console | json
    allowed_origins: str = "http://localhost:5173"

    # Rate limits (production only)
    rate_limit_default: str = "200/minute"
    referral_code_check_limit: str = "30/minute"

    # Admin actions (fraud flags, payout retries)
    admin_api_key: str = "change-me-in-production"

    # Database
    database_url: str = "sqlite:///./homebase.db"
    database_echo: bool = False

    # Stripe
    stripe_secret_key: str | None = None
    stripe_webhook_secret: str | None = None
    payout_currency: str = "usd"

    # Signup
    trial_days: int = 14
    homeowner_default_max_houses: int = 2

    # Referral credits (homeowner / contractor referrers)
    per_referral_credit: Decimal = Decimal("1.00")
    credit_caps: dict[str, Decimal] = Field(
        default_factory=lambda: {
            "homeowner-base": Decimal("5"),
            "homeowner-premium": Decimal("20"),
            "homeowner-premium_plus": Decimal("40"),
            "contractor-basic": Decimal("20"),
            "contractor-pro": Decimal("40"),
        }
    )

    # Agent commissions
    agent_payout_amounts: dict[str, Decimal] = Field(
        default_factory=lambda: {
            "agent-standard": Decimal("10"),
            "agent-partner": Decimal("15"),
        }
    )
    payout_threshold_months: int = 4


# Global settings instance
settings = Settings()

# ── Security validation ──────────────────────────────────────────────
if settings.env == "production":
    if settings.admin_api_key in _INSECURE_ADMIN_KEYS or len(settings.admin_api_key) < 32:
        print(
            "\nFATAL: ADMIN_API_KEY is insecure or too short (min 32 chars).\n"
            "   Set a strong random value:  openssl rand -hex 32\n",
            file=sys.stderr,
        )
        sys.exit(1)
