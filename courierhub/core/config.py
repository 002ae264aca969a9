"""
Application configuration

Transport defaults: 10s per attempt, two retries, 500ms base backoff.
All values can be overridden from the environment or a local .env file.
"""
import logging
from typing import Dict

from pydantic import field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    APP_NAME: str = "CourierHub"
    ENVIRONMENT: str = "production"
    LOG_LEVEL: str = "INFO"

    # Resilient transport (per attempt, not cumulative)
    SHIPPING_HTTP_TIMEOUT_MS: int = 10000
    SHIPPING_HTTP_MAX_RETRIES: int = 2
    SHIPPING_HTTP_BACKOFF_MS: int = 500
    SHIPPING_HTTP_JITTER_MS: int = 100

    # Package defaults when the caller sends no dimensions
    SHIPPING_DEFAULT_DIMENSION_CM: float = 10.0

    # Origin used by the public serviceability check (New Delhi)
    SHIPPING_DEFAULT_PICKUP_PINCODE: str = "110001"

    # Webhook shared secrets. Empty = verification disabled for that provider.
    SHIPPING_WEBHOOK_SECRET: str = ""
    SHIPROCKET_WEBHOOK_SECRET: str = ""
    SHIPWAY_WEBHOOK_SECRET: str = ""
    SHIPYAARI_WEBHOOK_SECRET: str = ""

    @field_validator(
        "SHIPPING_HTTP_TIMEOUT_MS",
        "SHIPPING_HTTP_MAX_RETRIES",
        "SHIPPING_HTTP_BACKOFF_MS",
        "SHIPPING_HTTP_JITTER_MS",
    )
    @classmethod
    def non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("must be >= 0")
        return v

    @field_validator("SHIPPING_DEFAULT_DIMENSION_CM")
    @classmethod
    def positive_dimension(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be > 0")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def upper_log_level(cls, v: str) -> str:
        return v.upper()

    @property
    def webhook_secrets(self) -> Dict[str, str]:
        return {
            "shiprocket": self.SHIPROCKET_WEBHOOK_SECRET,
            "shipway": self.SHIPWAY_WEBHOOK_SECRET,
            "shipyaari": self.SHIPYAARI_WEBHOOK_SECRET,
        }

    def webhook_secret_for(self, provider_id: str) -> str:
        """Per-provider secret, falling back to the shared one."""
        return self.webhook_secrets.get(provider_id) or self.SHIPPING_WEBHOOK_SECRET

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()


def get_settings() -> Settings:
    """FastAPI dependency hook; tests override it with their own Settings."""
    return settings
