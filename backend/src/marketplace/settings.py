"""Application settings and configuration."""

import sys
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_INSECURE_INTERNAL_TOKENS = {"change-me-in-production", "secret", "internal"}


class Settings(BaseSettings):
    """Application configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="MARKETPLACE_",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "marketplace-referrals"
    env: str = "development"
    allowed_origins: str = "http://localhost:3000"

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )
    log_format: Literal["console", "json"] = Field(
        default="console",
        description="Log output format",
    )

    # Database
    database_url: str = "sqlite:///./marketplace.db"
    database_echo: bool = False

    # Service-to-service calls (onboarding, payment verification)
    internal_api_token: str = "change-me-in-production"

    # Referral engine
    policy_cache_ttl_seconds: float = Field(
        default=30.0,
        description="How long a loaded referral policy snapshot is reused",
    )
    referral_code_length: int = 8
    referral_code_max_attempts: int = 8
    leaderboard_top_limit: int = 10
    public_base_url: str = "http://localhost:3000"

    # Share-link tracking
    share_tracking_enabled: bool = True
    share_tracking_store_ip_hash: bool = False
    share_tracking_ip_hash_salt: str = ""


# Global settings instance
settings = Settings()

# ── Security validation ──────────────────────────────────────────────
if settings.env == "production" and settings.internal_api_token in _INSECURE_INTERNAL_TOKENS:
    print(
        "\n❌  FATAL: MARKETPLACE_INTERNAL_API_TOKEN is not set.\n"
        "   Set a strong random value:  openssl rand -hex 32\n",
        file=sys.stderr,
    )
    sys.exit(1)
