# app/core/config.py
import os
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SECRET_KEY = "change-me-in-prod"
RATE_LIMIT_BACKENDS = ("database", "redis", "memory")


def split_csv(value: Optional[str]) -> List[str]:
    if not value or not value.strip():
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True)

    # Application
    APP_NAME: str = "Marketplace Auth Gateway"
    APP_VERSION: str = "1.0.0"
    ENV: str = "development"
    DEBUG: bool = False
    DOCS_ENABLED: bool = True
    HOST: str = "0.0.0.0"
    PORT: int = int(os.environ.get("PORT", 8000))

    # Persistence
    DATABASE_URL: str = "sqlite:///./marketplace.db"
    STORE_TIMEOUT_SEC: float = 5.0

    # Sessions
    SECRET_KEY: str = Field(default=DEFAULT_SECRET_KEY, alias="JWT_SECRET_KEY")
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    REFRESH_TOKEN_EXPIRE_DAYS: int = 30
    ACCESS_COOKIE_NAME: str = "access_token"
    REFRESH_COOKIE_NAME: str = "refresh_token"

    # One-time codes
    OTP_VERIFICATION_TTL_MINUTES: int = 10
    OTP_PASSWORD_RESET_TTL_MINUTES: int = 60
    OTP_ISSUANCE_MAX_ATTEMPTS: int = 5
    OTP_ISSUANCE_WINDOW: str = "1 hour"

    # Rate limiting
    RATE_LIMIT_BACKEND: str = "database"
    RATE_LIMIT_DEFAULT_MAX_ATTEMPTS: int = 3
    RATE_LIMIT_DEFAULT_WINDOW: str = "1 hour"
    REDIS_URL: Optional[str] = None

    # Email (Resend)
    RESEND_API_KEY: str = ""
    RESEND_FROM_EMAIL: str = "onboarding@resend.dev"
    RESEND_FROM_NAME: str = "Kanyiji Marketplace"
    APP_URL: str = "https://kanyiji.ng"
    EMAIL_TIMEOUT_SEC: float = 10.0

    MFA_ISSUER: str = "Kanyiji Marketplace"
    CRON_SECRET: Optional[str] = None

    # CORS
    ALLOWED_ORIGINS: str = "*"
    ALLOWED_METHODS: str = "GET,POST,PUT,PATCH,DELETE,OPTIONS"
    ALLOWED_HEADERS: str = "*"

    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    @field_validator("RATE_LIMIT_BACKEND")
    @classmethod
    def _known_backend(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in RATE_LIMIT_BACKENDS:
            raise ValueError(f"RATE_LIMIT_BACKEND must be one of {', '.join(RATE_LIMIT_BACKENDS)}")
        return value

    @field_validator("LOG_LEVEL")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return value.strip().upper()

    @model_validator(mode="after")
    def _production_needs_real_secrets(self):
        if self.is_production and self.SECRET_KEY == DEFAULT_SECRET_KEY:
            raise ValueError("JWT_SECRET_KEY must be set in production")
        if self.RATE_LIMIT_BACKEND == "redis" and not self.REDIS_URL:
            raise ValueError("REDIS_URL is required when RATE_LIMIT_BACKEND=redis")
        return self

    @property
    def allowed_origins_list(self) -> List[str]:
        return split_csv(self.ALLOWED_ORIGINS)

    @property
    def allowed_methods_list(self) -> List[str]:
        return split_csv(self.ALLOWED_METHODS)

    @property
    def allowed_headers_list(self) -> List[str]:
        return split_csv(self.ALLOWED_HEADERS)

    @property
    def is_production(self) -> bool:
        return self.ENV.lower() == "production"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
