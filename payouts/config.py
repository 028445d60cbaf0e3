import logging
from datetime import timedelta
from decimal import Decimal
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Credits -> settlement currency. One rate per currency, nowhere else.
    credit_rates: dict[str, Decimal] = Field(
        default_factory=lambda: {"PHP": Decimal("90"), "USD": Decimal("1.5")}
    )
    minimum_payout_credits: Decimal = Decimal("1")

    ewallet_number_pattern: str = r"^09\d{9}$"

    # Gateway
    gateway_max_retries: int = Field(default=1, ge=0)
    gateway_retry_backoff_seconds: float = Field(default=2.0, ge=0)
    gateway_timeout_seconds: float = Field(default=30.0, gt=0)
    processing_stale_after_minutes: int = 60

    stripe_secret_key: Optional[str] = None
    paymongo_secret_key: Optional[str] = None
    paymongo_base_url: str = "https://api.paymongo.com/v1"

    # Cron
    cron_secret: Optional[str] = None

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="PAYOUTS_",
        env_file=".env",
        extra="ignore",
    )

    @property
    def processing_stale_after(self) -> timedelta:
        return timedelta(minutes=self.processing_stale_after_minutes)

    def rate_for(self, currency: str) -> Decimal:
        try:
            return self.credit_rates[currency.upper()]
        except KeyError:
            raise KeyError(f"No credit rate configured for currency {currency}") from None


@lru_cache
def get_settings() -> Settings:
    return Settings()


def configure_logging(settings: Optional[Settings] = None) -> None:
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
