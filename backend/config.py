"""
Application configuration using Pydantic Settings.

This module manages all configuration from environment variables.
"""

import os
from functools import lru_cache
from typing import List
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration
    # sqlite:///... selects the embedded engine, postgresql://... the networked one
    DATABASE_URL: str = "sqlite:///./data/dashboard.db"
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_PRE_PING: bool = True
    DB_CONNECT_TIMEOUT: int = 2
    DEBUG: bool = False

    # Upload Configuration
    TEMP_UPLOAD_DIR: str = "uploads/"
    MAX_FILE_SIZE_MB: int = 10
    ALLOWED_EXTENSIONS: List[str] = [".xlsx", ".xlsm"]

    # Legacy file-backed store (pre-database layout)
    LEGACY_DATA_FILE: str = "data/dashboard_data.json"
    LEGACY_BACKUP_DIR: str = "data/backup"

    # Logging Configuration
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "dashboard.log"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are loaded only once.
    """
    return Settings()


# Create global settings instance
settings = get_settings()


def ensure_temp_dir(path: str = None) -> str:
    """Ensure temporary upload directory exists."""
    path = path or settings.TEMP_UPLOAD_DIR
    os.makedirs(path, exist_ok=True)
    return path
