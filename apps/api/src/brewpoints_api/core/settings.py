from functools import lru_cache
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./brewpoints.db"
    database_echo: bool = False
    log_level: str = "INFO"
    api_host: str = "127.0.0.1"
    api_port: int = 8000

    # Internal API security for the admin back-office
    admin_api_key: str = ""

    # Tier thresholds (inclusive lower bounds)
    loyalty_silver_threshold: int = Field(200, gt=0)
    loyalty_gold_threshold: int = Field(550, gt=0)

    # Ledger concurrency
    ledger_cas_max_attempts: int = Field(3, ge=1)

    # Redemption policy
    redemption_block_duplicate_pending: bool = True

    # Community goals
    goal_contribution_auto_refund: bool = True

    # Referrals and bonuses
    referral_default_bonus_points: int = Field(50, gt=0)
    birthday_bonus_points: int = Field(20, gt=0)

    # Email / notification settings
    notification_email_enabled: bool = False
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_username: str | None = None
    smtp_password: str | None = None
    smtp_use_tls: bool = True
    smtp_sender_email: str | None = None
    smtp_sender_name: str | None = "Brewpoints"

    # Tracing
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_console_exporter: bool = False

    @model_validator(mode="after")
    def _check_tier_thresholds(self) -> "Settings":
        if self.loyalty_silver_threshold >= self.loyalty_gold_threshold:
            raise ValueError("loyalty_silver_threshold must be lower than loyalty_gold_threshold")
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
