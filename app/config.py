"""
Configuration module for environment variables.
"""
from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str = Field(
        default="sqlite:///./task_wheel.db",
        description="SQLAlchemy connection URL (SQLite or PostgreSQL)"
    )

    # JWT Configuration
    jwt_access_secret: str = Field(default="CHANGE_THIS_ACCESS_SECRET")
    jwt_refresh_secret: str = Field(default="CHANGE_THIS_REFRESH_SECRET")
    jwt_algorithm: str = Field(default="HS256")
    jwt_access_expires_minutes: int = Field(
        default=60,
        description="Lifetime of access tokens in minutes"
    )
    jwt_refresh_expires_days: int = Field(
        default=30,
        description="Lifetime of refresh tokens in days"
    )

    # Password hashing
    bcrypt_salt_rounds: int = Field(default=12, ge=4, le=31)

    # Seed admin account (created on startup when both are set)
    admin_email: Optional[str] = Field(default=None)
    admin_password: Optional[str] = Field(default=None)

    # Query defaults
    default_page_limit: int = Field(default=10, ge=1)
    max_page_limit: int = Field(
        default=100,
        ge=1,
        description="Upper bound applied to the ?limit= query parameter"
    )

    # Spin wheel
    spin_exclusion_hours: int = Field(
        default=24,
        description="Pending spins younger than this remove their task from the wheel"
    )

    # CORS
    cors_origins: List[str] = Field(
        default=["http://localhost:5173"],
        description="Origins allowed to call the API with credentials"
    )

    # Application Settings
    app_env: str = Field(default="development")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    log_file: Optional[str] = Field(default=None)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to ensure settings are loaded only once.
    """
    return Settings()


# Convenience function for direct access
settings = get_settings()
