"""
Application Configuration

Centralized settings management using Pydantic Settings.
Supports environment variables and .env files.
"""

from pydantic import Field
from pydantic_settings import BaseSettings
from pathlib import Path
from typing import Optional


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # ==========================================================================
    # App Settings
    # ==========================================================================
    APP_NAME: str = "Effect Studio"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development, staging, PROD
    DEBUG: bool = True

    # ==========================================================================
    # Storage Settings
    # ==========================================================================
    STORAGE_BACKEND: str = "local"  # local, memory
    LOCAL_STORAGE_PATH: str = "./data/storage"

    # ==========================================================================
    # Image Settings
    # ==========================================================================
    MAX_IMAGE_SIZE_BYTES: int = 10485760  # 10MB
    MAX_IMAGE_DIMENSION: int = 2048
    UPLOAD_JPEG_QUALITY: int = Field(default=85, ge=1, le=95)
    RESULT_JPEG_QUALITY: int = Field(default=90, ge=1, le=95)

    # Age-based cleanup (0 disables)
    IMAGE_TTL_SECONDS: int = 1800
    JOB_TTL_SECONDS: int = 3600
    SWEEP_INTERVAL_SECONDS: int = 300

    # ==========================================================================
    # Generation Settings (Gemini)
    # ==========================================================================
    GEMINI_API_KEY: Optional[str] = None
    GEMINI_MODEL: str = "gemini-2.5-flash-image-preview"
    GEMINI_API_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta"
    GENERATION_TIMEOUT_SECONDS: float = Field(default=30.0, ge=1.0, le=300.0)

    # Circuit breaker around the generative service
    GENERATION_FAILURE_THRESHOLD: int = 3
    GENERATION_RECOVERY_SECONDS: int = 120

    # ==========================================================================
    # Fallback Settings
    # ==========================================================================
    FALLBACK_ENABLED: bool = True
    FALLBACK_ON_TIMEOUT: bool = False
    DEFAULT_INTENSITY: float = Field(default=0.8, ge=0.0, le=1.0)

    # ==========================================================================
    # Logging Settings
    # ==========================================================================
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT_JSON: bool = True  # JSON for production, console for development

    # ==========================================================================
    # CORS Settings
    # ==========================================================================
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173,http://localhost:8000"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


# Global settings instance
settings = Settings()

# Ensure the storage directory exists
if settings.STORAGE_BACKEND == "local":
    Path(settings.LOCAL_STORAGE_PATH).mkdir(parents=True, exist_ok=True)
