from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import List, Optional, Tuple
from pathlib import Path

from spms.core.types import ACADEMIC_YEAR_PATTERN


def parse_promotion_cohorts(v: str) -> List[Tuple[str, int]]:
    """Parse promotion cohorts from environment variable format: DEGREE:SEM,DEGREE:SEM"""
    if not v:
        return []
    cohorts = []
    for item in v.split(','):
        if ':' in item:
            degree, semester = item.strip().rsplit(':', 1)
            cohorts.append((degree.strip(), int(semester.strip())))
    return cohorts


class Settings(BaseSettings):
    """Application settings - all configurable via environment variables"""

    # ==========================================
    # Application
    # ==========================================
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    # ==========================================
    # Database
    # ==========================================
    DATABASE_URL: str
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_ECHO: bool = False

    # ==========================================
    # Celery
    # ==========================================
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/0"
    CELERY_TASK_TIME_LIMIT: int = 3600  # 1 hour
    CELERY_TASK_SOFT_TIME_LIMIT: int = 3000  # 50 minutes
    CELERY_RESULT_EXPIRES: int = 86400  # 24 hours

    # ==========================================
    # Logging
    # ==========================================
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "logs/app.log"

    # ==========================================
    # Academic calendar
    # ==========================================
    FINAL_SEMESTER: int = 8
    CURRENT_ACADEMIC_YEAR: Optional[str] = None  # e.g. "2025-26"; overrides the stored setting

    # ==========================================
    # Promotion & reconciliation
    # ==========================================
    RECONCILE_MIN_SEMESTER: int = 6
    RECONCILE_MAX_CONCURRENCY: int = 4
    OPTIMISTIC_RETRY_ATTEMPTS: int = 5

    # Daily promotion pipeline (UTC)
    PROMOTION_SCHEDULE_HOUR: int = 2
    PROMOTION_SCHEDULE_MINUTE: int = 0
    PROMOTION_COHORTS_STR: str = "M.Tech:3"  # Format: DEGREE:SEM,DEGREE:SEM

    @field_validator("CURRENT_ACADEMIC_YEAR")
    @classmethod
    def validate_academic_year(cls, v: Optional[str]) -> Optional[str]:
        if v in (None, ""):
            return None
        if not ACADEMIC_YEAR_PATTERN.match(v):
            raise ValueError("CURRENT_ACADEMIC_YEAR must look like YYYY-YY")
        return v

    @field_validator("RECONCILE_MAX_CONCURRENCY", "OPTIMISTIC_RETRY_ATTEMPTS")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @property
    def PROMOTION_COHORTS(self) -> List[Tuple[str, int]]:
        """Cohorts advanced by the daily promotion pipeline"""
        return parse_promotion_cohorts(self.PROMOTION_COHORTS_STR)

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields in .env that aren't defined in Settings

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        Path(self.LOG_FILE).parent.mkdir(exist_ok=True, parents=True)

    def is_dev_mode(self) -> bool:
        """Check if running in development mode"""
        return self.ENVIRONMENT == "development" or self.DEBUG


# Create settings instance
settings = Settings()
