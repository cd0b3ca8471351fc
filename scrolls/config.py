"""
Configuration management using Pydantic Settings
"""
from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Database
    DATABASE_URL: str

    # Redis (question cache + generation job store)
    REDIS_URL: str = "redis://redis:6379/0"

    # Application
    APP_NAME: str = "Scrolls of Wisdom Quiz Core"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ALLOWED_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:8000"]
    PUBLIC_BASE_URL: str = "http://localhost:8000"

    # Rate Limiting
    RATE_LIMIT_PER_MINUTE: int = 60
    RATE_LIMIT_PER_HOUR: int = 1000

    # Question projection cache
    CACHE_ENABLED: bool = True
    QUIZ_CACHE_TTL: int = 900  # 15 minutes

    # Generation jobs
    JOB_STORE_BACKEND: str = "redis"  # redis | memory
    JOB_TIMEOUT_SECONDS: int = 600  # orphaned pending/processing jobs fail after this
    JOB_RETENTION_SECONDS: int = 7200  # how long a job stays readable at all
    QUIZ_GENERATION_WEBHOOK_URL: Optional[str] = None
    WEBHOOK_DISPATCH_TIMEOUT: float = 10.0

    # Attempts
    SUBMIT_GRACE_SECONDS: int = 60
    STALE_ATTEMPT_GRACE_MINUTES: int = 30
    STALE_ATTEMPT_MAX_AGE_HOURS: int = 4

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True


# Global settings instance
settings = Settings()
