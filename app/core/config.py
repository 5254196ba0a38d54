"""
Application configuration management using Pydantic Settings
Handles all environment variables and application settings
"""

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from decimal import Decimal
from typing import Optional, List
from functools import lru_cache

class Settings(BaseSettings):
    """Main application settings"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # Application Settings
    APP_NAME: str = "ReferralHub API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # Server Settings
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    WORKERS: int = 4

    # Database Configuration
    DATABASE_URL: str = "sqlite:///./referralhub.db"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 40
    DATABASE_POOL_TIMEOUT: int = 30
    DATABASE_ECHO: bool = False

    # CORS Configuration
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    # Sensitive data vault
    REFERRAL_ENCRYPTION_KEY: Optional[str] = None

    # Member directory
    MEMBER_DIRECTORY_URL: Optional[str] = None
    MEMBER_DIRECTORY_TOKEN: Optional[str] = None

    # Finance gateway
    FINANCE_API_URL: Optional[str] = None
    FINANCE_API_TOKEN: Optional[str] = None
    FINANCE_API_TIMEOUT_SECONDS: float = 8.0
    FINANCE_GATEWAY_STUB_MODE: bool = False

    # Business Logic Settings
    REFERRAL_BONUS_RATE: Decimal = Decimal("0.05")
    DEFAULT_CURRENCY: str = "TWD"

    # Celery Configuration
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/0"
    NOTIFICATION_WEBHOOK_URL: Optional[str] = None

    @field_validator("REFERRAL_BONUS_RATE")
    @classmethod
    def validate_bonus_rate(cls, v: Decimal) -> Decimal:
        if v < 0 or v > 1:
            raise ValueError("REFERRAL_BONUS_RATE must be a fraction between 0 and 1")
        # Stored as Numeric(6, 4) alongside each verified deal
        if v != v.quantize(Decimal("0.0001")):
            raise ValueError("REFERRAL_BONUS_RATE cannot have more than four decimal places")
        return v

    @field_validator("DEFAULT_CURRENCY")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.strip().upper()

    @model_validator(mode="after")
    def forbid_stub_gateway_in_production(self):
        """Stub verification approves every deal, it must never run in production"""
        if self.FINANCE_GATEWAY_STUB_MODE and self.ENVIRONMENT == "production":
            raise ValueError("FINANCE_GATEWAY_STUB_MODE cannot be enabled in production")
        return self

    @property
    def database_url_async(self) -> str:
        """Convert sync database URL to async"""
        if self.DATABASE_URL.startswith("postgresql://"):
            return self.DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://")
        elif self.DATABASE_URL.startswith("sqlite://"):
            return self.DATABASE_URL.replace("sqlite://", "sqlite+aiosqlite://")
        return self.DATABASE_URL

    @property
    def finance_gateway_configured(self) -> bool:
        return bool(self.FINANCE_API_URL)

@lru_cache()
def get_settings() -> Settings:
    """
    Create cached settings instance
    This ensures settings are loaded only once
    """
    return Settings()

# Global settings instance
settings = get_settings()
