# Central place for all configurable settings. We use Pydantic's
# BaseSettings so values can be read from env vars or a .env file.
# This keeps deployment flexible without hardcoding secrets.

import json
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def safe_json_loads(value):
    try:
        return json.loads(value)
    except Exception:
        return value


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_json_loads=safe_json_loads,
    )

    # Core DB connection string, like sqlite:///./affiliates.db or a Postgres URL.
    DATABASE_URL: str

    # Toggle SQLAlchemy echo logs. Useful for debugging queries locally.
    DB_ECHO: bool = False

    # Shared token checked by the admin routers. Issuing and rotating it
    # belongs to whatever fronts this service.
    ADMIN_API_TOKEN: str

    # Every admin and webhook call is scoped to a single shop.
    SHOP_HEADER_NAME: str = "X-Shop-ID"

    # Attribution: fallback window when the winning offer has none, and how
    # far back fingerprint candidates are loaded before per-offer filtering.
    DEFAULT_ATTRIBUTION_WINDOW_DAYS: int = Field(default=90, gt=0)
    FINGERPRINT_LOOKBACK_DAYS: int = Field(default=90, gt=0)

    # Commission eligibility (net-days) when an affiliate has no terms set.
    DEFAULT_PAYOUT_TERMS_DAYS: int = Field(default=30, ge=0)

    # Affiliate display numbers start here for each shop.
    AFFILIATE_NUMBER_START: int = 30483
    AFFILIATE_NUMBER_MAX_RETRIES: int = Field(default=3, gt=0)

    # Postback delivery to external partners.
    POSTBACK_TIMEOUT_SECONDS: int = 10
    POSTBACK_USER_AGENT: str = "affiliate-engine/1.0"
    POSTBACK_MAX_ATTEMPTS: int = Field(default=5, gt=0)
    POSTBACK_RETRY_AFTER_SECONDS: int = 3600
    POSTBACK_RETRY_BATCH_SIZE: int = 100

    # Payout provider (PayPal Payouts). Mode is "sandbox" or "live".
    PAYPAL_CLIENT_ID: Optional[str] = None
    PAYPAL_CLIENT_SECRET: Optional[str] = None
    PAYPAL_MODE: str = "sandbox"
    PAYPAL_TIMEOUT_SECONDS: int = 30
    PAYOUT_EMAIL_SUBJECT: str = "Your Affiliate Commission Payment"

    # Fraud heuristics that raise flags after a commission is created.
    FRAUD_SELF_REFERRAL_SCORE: int = 50
    FRAUD_SELF_REFERRAL_IP_CLICKS: int = 5
    FRAUD_SELF_REFERRAL_IP_DAYS: int = 7
    FRAUD_EXCESSIVE_CLICKS: int = 100
    FRAUD_CLICK_WINDOW_HOURS: int = 24
    FRAUD_REFUND_RATE_PERCENT: float = 30.0

    @field_validator("PAYPAL_MODE", mode="before")
    @classmethod
    def _normalize_mode(cls, value):
        if isinstance(value, str):
            value = value.strip().lower()
        if value not in {"sandbox", "live"}:
            raise ValueError("PAYPAL_MODE must be 'sandbox' or 'live'")
        return value


# Instantiate a single settings object for app-wide import.
# Any module can just `from affiliate_engine.core.config import settings`.
settings = Settings()
