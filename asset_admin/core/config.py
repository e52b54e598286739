"""
Application configuration management.
"""
from typing import List, Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # Application
    DEBUG: bool = False
    APP_NAME: str = "asset-admin"
    CORS_ORIGINS: List[str] = ["http://localhost:8000", "http://127.0.0.1:8000"]

    # Database
    DATABASE_URL: str = "postgresql+asyncpg://assets:assets@db:5432/assets"
    DATABASE_POOL_SIZE: int = 10
    DATABASE_MAX_OVERFLOW: int = 20

    # Redis (Celery broker and result backend)
    REDIS_URL: str = "redis://redis:6379/0"

    # Security
    JWT_SECRET_KEY: str = "jwt-secret-key-change-in-production"
    JWT_ALGORITHM: str = "HS256"

    # File Storage
    STORAGE_ROOT: str = "/app/uploads"
    BACKUP_ROOT: str = "/app/backups"
    PUBLIC_URL_PREFIX: str = "/uploads"
    MAX_FILE_SIZE: int = 104857600  # 100MB
    BULK_UPLOAD_MAX_FILES: int = 50
    CONTENT_CACHE_SECONDS: int = 3600

    # Batch processing
    DEFAULT_BATCH_SIZE: int = 20
    MAX_BATCH_SIZE: int = 100
    MAX_PROCESSING_SECONDS: Optional[float] = None

    # Safety policy
    DELETE_MAX_FILES: int = 100
    DELETE_CONFIRM_THRESHOLD: int = 10
    MOVE_MAX_FILES: int = 1000
    MOVE_CONFIRM_THRESHOLD: int = 100
    ORGANIZE_MAX_FILES: int = 1000
    DANGEROUS_REFERENCE_THRESHOLD: int = 5
    PROTECTED_DESTINATIONS: List[str] = ["/system", "/admin", "/config", "/backup"]

    # Conflict resolution
    MAX_RENAME_ATTEMPTS: int = 100

    # Unused file detection
    UNUSED_GRACE_PERIOD_HOURS: int = 24
    UNUSED_WARNING_COUNT: int = 100
    UNUSED_WARNING_BYTES: int = 1073741824  # 1GB

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"
    LOG_DIR: Optional[str] = None

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
