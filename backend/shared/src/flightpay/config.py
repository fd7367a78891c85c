"""Runtime configuration for flightpay services."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from flightpay.models.enums import VerificationMode


class Settings(BaseSettings):
    """Runtime settings loaded from environment.

    Secrets (provider API keys, webhook secrets) are not settings; they are
    read from SSM Parameter Store by the provider services.
    """

    environment: str = Field(default="dev", alias="ENVIRONMENT")

    booking_timeout_minutes: int = Field(default=5, ge=1)
    expiry_sweep_interval_minutes: int = Field(default=5, ge=1)
    scheduler_enabled: bool = True

    webhook_verification_mode: VerificationMode = VerificationMode.STRICT

    paymob_base_url: str = "https://accept.paymob.com/api"
    paymob_integration_id: str = ""
    payment_key_expiration_seconds: int = 3600

    provider_timeout_seconds: float = 15.0
    provider_max_retries: int = Field(default=3, ge=0)
    provider_retry_delay_seconds: float = 1.0

    notification_sender: str = "bookings@flightpay.example"
    ses_region: str | None = None

    model_config = SettingsConfigDict(
        env_prefix="FLIGHTPAY_",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the shared Settings instance.

    Returns:
        Settings: Settings loaded once per process.
    """
    return Settings()
