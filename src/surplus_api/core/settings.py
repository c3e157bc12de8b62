from functools import lru_cache
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./surplus.db"
    database_echo: bool = False
    secret_key: str = "change-me"
    currency: str = "BRL"

    # Application URLs
    frontend_url: str = "http://localhost:3000"
    api_base_url: str = "http://localhost:8000"

    # MercadoPago configuration
    mercadopago_access_token: str = ""
    mercadopago_webhook_secret: str = ""
    mercadopago_base_url: str = "https://api.mercadopago.com"
    mercadopago_timeout_seconds: float = 5.0
    mercadopago_max_attempts: int = 3
    mercadopago_backoff_seconds: float = 0.5

    # Payment reconciliation
    payment_hold_minutes: int = 30
    payment_notification_max_attempts: int = 5
    payment_notification_retry_batch_size: int = 50

    # Marketplace scheduler
    marketplace_job_scheduler_enabled: bool = False
    marketplace_job_schedule_path: str = "config/schedules.toml"

    # Operator endpoints (observability, dev webhook simulation)
    operator_api_key: str = ""

    # Logging and tracing
    log_level: str = "INFO"
    tracing_enabled: bool = False

    @field_validator("mercadopago_max_attempts", "payment_notification_max_attempts", mode="before")
    @classmethod
    def _at_least_one(cls, value: object) -> int:
        try:
            parsed = int(value)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return 1
        return max(parsed, 1)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
