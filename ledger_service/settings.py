"""Service settings loaded from the environment."""

from functools import lru_cache
from typing import Dict

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# client id -> overdraft limit; every account starts at balance 0
DEFAULT_ACCOUNTS: Dict[int, int] = {
    1: 100000,
    2: 80000,
    3: 1000000,
    4: 10000000,
    5: 500000,
}

STRATEGIES = ("locking", "conditional")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    # sqlite URLs are for development and tests only: writes on every account share one lock
    database_url: str = "postgresql://admin:123@db:5432/rinha"
    pool_size: int = 20
    max_overflow: int = 0
    pool_timeout: float = 5.0
    store_timeout_seconds: float = 5.0

    # Ledger
    ledger_strategy: str = "locking"
    accounts: Dict[int, int] = DEFAULT_ACCOUNTS

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8080

    # Logging
    log_level: str = "INFO"

    @field_validator("ledger_strategy")
    @classmethod
    def _known_strategy(cls, value: str) -> str:
        value = value.lower()
        if value not in STRATEGIES:
            raise ValueError(f"ledger_strategy must be one of {', '.join(STRATEGIES)}")
        return value

    @field_validator("accounts")
    @classmethod
    def _positive_limits(cls, value: Dict[int, int]) -> Dict[int, int]:
        if not value:
            raise ValueError("at least one account must be provisioned")
        for cliente_id, limite in value.items():
            if cliente_id < 1 or limite <= 0:
                raise ValueError(f"invalid account {cliente_id}: limit {limite}")
        return value

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
