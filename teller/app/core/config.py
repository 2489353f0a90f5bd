from __future__ import annotations

from decimal import Decimal
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Teller Bank API"
    database_url: str = "sqlite:///teller.db"
    log_level: str = "INFO"

    store_timeout_seconds: float = 5.0
    store_retry_attempts: int = 3
    lock_timeout_seconds: float = 5.0
    monthly_interest_rate: Decimal = Decimal("0.01")

    bootstrap_admin_username: Optional[str] = None
    bootstrap_admin_password: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="TELLER_",
        extra="ignore",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
