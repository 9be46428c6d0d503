from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import List
from functools import lru_cache
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./stock_reconciliation.db"

    # Database Connection Pool Settings
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # JWT Settings (identity provider)
    SECRET_KEY: str = "change-me-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # App Settings
    APP_NAME: str = "Stock Reconciliation Service"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Stock Reconciliation Settings
    # Reason codes are owned by the surrounding configuration; items are validated against this list
    RECONCILIATION_DISCREPANCY_REASONS: List[str] = [
        "damage",
        "miscount",
        "theft",
        "expiry",
        "other",
    ]
    RECONCILIATION_APPLY_STOCK_ON_APPROVAL: bool = True  # Write discrepancies back to product stock on approval
    RECONCILIATION_DEFAULT_PAGE_SIZE: int = 20
    RECONCILIATION_MAX_PAGE_SIZE: int = 100

    # Money
    CURRENCY_MINOR_UNITS: int = 2  # Decimal places of the minor unit (cents, paise)

    @field_validator('CORS_ORIGINS', 'RECONCILIATION_DISCREPANCY_REASONS', mode='before')
    @classmethod
    def parse_string_list(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [item.strip() for item in v.split(',') if item.strip()]
        return v

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
