"""
Application configuration.

All configuration is loaded from environment variables.
Never hardcode secrets or connection strings in code.
"""

import os
from functools import lru_cache

from dotenv import load_dotenv

# Load .env file into environment variables
load_dotenv()


class Settings:
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = os.getenv("APP_NAME", "Audit Trail Service")
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # Server
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8000"))

    # Database
    # Production deployments point this at Postgres.
    DATABASE_URL: str = os.getenv(
        "DATABASE_URL",
        "sqlite:///./audit_trail.db"
    )

    # Pagination
    # Cursors are signed with this key. Rotating it invalidates
    # every cursor handed out before the rotation.
    CURSOR_SECRET: str = os.getenv("CURSOR_SECRET", "dev-cursor-secret")
    DEFAULT_PAGE_SIZE: int = int(os.getenv("DEFAULT_PAGE_SIZE", "50"))
    MAX_PAGE_SIZE: int = int(os.getenv("MAX_PAGE_SIZE", "100"))

    # Export
    EXPORT_BATCH_SIZE: int = int(os.getenv("EXPORT_BATCH_SIZE", "500"))

    # Environment
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")


@lru_cache()
def get_settings() -> Settings:
    """
    Return cached settings instance.

    The Settings object is created once and reused for all
    subsequent calls, so environment variables are read a
    single time per process.
    """
    return Settings()
