# clinic/config.py - Configuration management
from dotenv import load_dotenv

load_dotenv()
from typing import Optional, Union
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator, model_validator


class Settings(BaseSettings):
    """Application settings with validation and environment variable support"""

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True,
    )

    # Application
    app_name: str = Field(default="Private Clinic Patient Record System", alias="APP_NAME")
    app_version: str = "1.0.0"
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")

    # Database
    database_url: str = Field(default="sqlite:///./clinic.db", alias="DATABASE_URL")

    # Field-level encryption: diagnosis/reason and IC number use separate keys
    encryption_key: str = Field(..., alias="ENCRYPTION_KEY")
    secure_key: str = Field(..., alias="SECURE_KEY")

    # Sessions
    redis_url: Optional[str] = Field(default=None, alias="REDIS_URL")
    session_timeout_seconds: int = Field(default=900, alias="SESSION_TIMEOUT_SECONDS")
    session_cookie_name: str = Field(default="clinic_session", alias="SESSION_COOKIE_NAME")
    session_cookie_secure: bool = Field(default=False, alias="SESSION_COOKIE_SECURE")

    # Login lockout / audit
    lockout_window_minutes: int = Field(default=60, alias="LOCKOUT_WINDOW_MINUTES")
    audit_page_size: int = Field(default=50, alias="AUDIT_PAGE_SIZE")

    clinic_timezone: str = Field(default="Asia/Kuala_Lumpur", alias="CLINIC_TIMEZONE")

    # CORS
    cors_origins: Union[str, list[str]] = Field(default=["http://localhost:3000", "http://localhost:8000"], alias="CORS_ORIGINS")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=False, alias="LOG_JSON")

    # Seeding
    admin_default_password: Optional[str] = Field(default=None, alias="ADMIN_DEFAULT_PASSWORD")
    doctor_default_password: Optional[str] = Field(default=None, alias="DOCTOR_DEFAULT_PASSWORD")

    @field_validator("cors_origins", mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            if not v.strip():
                return ["http://localhost:3000", "http://localhost:8000"]
            return [origin.strip() for origin in v.split(',') if origin.strip()]
        return v

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v):
        if not v:
            raise ValueError("DATABASE_URL is required")
        if not v.startswith(("postgresql://", "postgresql+psycopg2://", "mysql+pymysql://", "sqlite://")):
            raise ValueError("DATABASE_URL must be a valid PostgreSQL, MySQL or SQLite URL")
        return v

    @field_validator("encryption_key", "secure_key")
    @classmethod
    def validate_key_length(cls, v):
        if not v or len(v) < 16:
            raise ValueError("ENCRYPTION_KEY and SECURE_KEY must be at least 16 characters long")
        return v

    @field_validator("session_timeout_seconds", "lockout_window_minutes", "audit_page_size")
    @classmethod
    def validate_positive(cls, v):
        if v <= 0:
            raise ValueError("must be a positive integer")
        return v

    @model_validator(mode="after")
    def check_distinct_keys(self):
        if self.encryption_key == self.secure_key:
            raise ValueError("ENCRYPTION_KEY and SECURE_KEY must be different")
        return self

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"

    @property
    def redis_enabled(self) -> bool:
        return bool(self.redis_url)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()

# Note: Do not instantiate settings at import time to avoid failing
# on missing environment variables. Use `get_settings()` instead.
