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

    # App Settings
    APP_NAME: str = "Commerce Order Core"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Cache Settings
    REDIS_URL: Optional[str] = None  # e.g., "redis://localhost:6379/0"
    CACHE_ENABLED: bool = True
    PRICE_CACHE_TTL: int = 120  # Resolved unit prices, never invalidated early

    # Order pipeline
    FANOUT_MAX_DEPTH: int = 10  # Upstream hops before fan-out gives up
    ORDER_SEQUENCE_MAX_RETRIES: int = 3  # Retries when two writers create the same sequence row

    # Payment Gateway (invoice cancellation only)
    PAYMENT_GATEWAY_URL: str = ""
    PAYMENT_GATEWAY_API_KEY: str = ""
    PAYMENT_GATEWAY_TIMEOUT: float = 30.0

    # Encryption (order addresses)
    ENCRYPTION_SECRET: str = ""

    # Notifications
    NOTIFICATION_WEBHOOK_URL: Optional[str] = None

    # Background jobs
    SCHEDULER_ENABLED: bool = True
    CACHE_CLEANUP_INTERVAL_MINUTES: int = 5
    FANOUT_RESUME_INTERVAL_MINUTES: int = 10
    FANOUT_RESUME_AFTER_MINUTES: int = 5  # Root orders stuck in pending longer than this are resumed

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
        return [origin for origin in self.CORS_ORIGINS if origin]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
