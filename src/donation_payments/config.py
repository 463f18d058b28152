"""Runtime configuration read from environment variables."""

import os
from decimal import Decimal
from functools import lru_cache
from typing import List

from pydantic import BaseModel, Field


def _split_csv(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseModel):
    """Service settings.

    Every field maps to one environment variable of the same name in upper
    case. Use :func:`get_settings` to obtain the cached instance.
    """

    database_url: str = "sqlite+aiosqlite:///./donations.db"
    api_key: str = ""
    payment_gateway: str = "stripe"

    # Stripe credentials
    stripe_api_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_connect_webhook_secret: str = ""

    # Fee schedule applied at initiation time
    stripe_processing_fee_rate: Decimal = Decimal("0.029")
    stripe_processing_fixed_fee: int = 30
    platform_fee_rate: Decimal = Decimal("0.01")

    donation_payment_method_types: List[str] = Field(
        default_factory=lambda: ["card", "us_bank_account"]
    )
    webhook_marker_ttl_hours: int = 72
    platform_country: str = "US"
    initiate_rate_limit: str = "30/minute"

    @property
    def webhook_secrets(self) -> List[str]:
        """Signing secrets in the order they are tried."""
        return [
            secret
            for secret in (self.stripe_webhook_secret, self.stripe_connect_webhook_secret)
            if secret
        ]

    @classmethod
    def from_env(cls) -> "Settings":
        values = {}
        env_map = {
            "database_url": "DATABASE_URL",
            "api_key": "API_KEY",
            "payment_gateway": "PAYMENT_GATEWAY",
            "stripe_api_key": "STRIPE_API_KEY",
            "stripe_webhook_secret": "STRIPE_WEBHOOK_SECRET",
            "stripe_connect_webhook_secret": "STRIPE_CONNECT_WEBHOOK_SECRET",
            "stripe_processing_fee_rate": "STRIPE_PROCESSING_FEE_RATE",
            "stripe_processing_fixed_fee": "STRIPE_PROCESSING_FIXED_FEE",
            "platform_fee_rate": "PLATFORM_FEE_RATE",
            "webhook_marker_ttl_hours": "WEBHOOK_MARKER_TTL_HOURS",
            "platform_country": "PLATFORM_COUNTRY",
            "initiate_rate_limit": "INITIATE_RATE_LIMIT",
        }
        for field_name, env_name in env_map.items():
            value = os.getenv(env_name)
            if value:
                values[field_name] = value

        method_types = os.getenv("DONATION_PAYMENT_METHOD_TYPES")
        if method_types:
            values["donation_payment_method_types"] = _split_csv(method_types)

        return cls(**values)


@lru_cache()
def get_settings() -> Settings:
    return Settings.from_env()
