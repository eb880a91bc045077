from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Optional
from functools import lru_cache
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str

    # Database Connection Pool Settings
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes
    AUTO_CREATE_TABLES: bool = False  # create_all on startup (dev only, use alembic otherwise)

    # App Settings
    APP_NAME: str = "Funnel Checkout"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: list[str] = ["*"]

    # Checkout
    DEFAULT_CURRENCY: str = "USD"
    MAX_PAYMENT_RETRIES: int = 5  # Declines allowed before retry is refused
    DEMO_MODE: bool = False  # Simulated gateway, cards ending 0002/9999 decline

    # Spreedly Payment Gateway
    SPREEDLY_ENVIRONMENT_KEY: str = ""
    SPREEDLY_ACCESS_SECRET: str = ""
    SPREEDLY_BASE_URL: str = "https://core.spreedly.com/v1"
    GATEWAY_TIMEOUT_SECONDS: float = 5.0  # Seconds per gateway call

    # Redis Cache Settings
    REDIS_URL: Optional[str] = None  # e.g., "redis://localhost:6379/0"
    CACHE_ENABLED: bool = True
    CHECKOUT_CONFIG_CACHE_TTL: int = 60  # Seconds for the public validate payload

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [origin.strip() for origin in v.split(',')]
        return v

    @property
    def cors_origins_list(self) -> list[str]:
        return self.CORS_ORIGINS

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
