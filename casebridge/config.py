"""
Configuration for the CaseBridge service
========================================

Environment variables (case-insensitive, also read from .env):
- ENVIRONMENT: development|production (default: development)
- DATABASE_URL: SQLAlchemy URL; PostgreSQL in production (default: sqlite:///./casebridge.db)
- SQL_ECHO: log every statement (default: false)
- REDIS_URL: Redis for token revocation, rate limiting and the job queue (unset = disabled)
- STORAGE_ROOT: directory holding the storage buckets (default: ./storage)
- MAX_UPLOAD_BYTES: per-file upload limit (default: 25 MB)
- INTERNAL_SESSION_HOURS: lifetime of an internal portal session (default: 24)
- INVITATION_EXPIRY_DAYS: staff invitation lifetime (default: 7)
- REQUIRE_EMAIL_CONFIRMATION: clients and firm registrants must confirm email (default: false)
- REQUIRE_INTAKE_PAYMENT: case reports need a paid intake invoice (default: false)
- DEADLINE_WARNING_DAYS: window for deadline_approaching notifications (default: 3)
- CORS_ORIGINS: comma separated list of allowed portal origins
- RATE_LIMIT_ENABLED: install the Redis rate-limit middleware (default: false)

JWT and SMTP settings are read by auth.py and email_utils.py.
"""

from typing import List, Optional
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings from environment variables"""

    environment: str = "development"
    service_version: str = "1.0.0"

    # Infrastructure
    database_url: str = "sqlite:///./casebridge.db"
    sql_echo: bool = False
    db_connect_timeout: int = 5
    redis_url: Optional[str] = None
    storage_root: str = "./storage"
    max_upload_bytes: int = 25 * 1024 * 1024

    # Sessions / accounts
    internal_session_hours: int = 24
    invitation_expiry_days: int = 7
    password_reset_expiry_minutes: int = 60
    email_confirmation_expiry_hours: int = 48
    require_email_confirmation: bool = False

    # Intake / billing
    require_intake_payment: bool = False
    currency: str = "NGN"

    # Notifications
    deadline_warning_days: int = 3

    # Realtime
    realtime_queue_size: int = 100

    # HTTP
    cors_origins: str = "http://localhost:5173,http://localhost:5174"
    rate_limit_enabled: bool = False

    class Config:
        env_prefix = ""
        case_sensitive = False
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"

    def cors_origin_list(self) -> List[str]:
        origins = (o.strip().strip("\"'").rstrip("/") for o in self.cors_origins.split(","))
        return [o for o in origins if o]

    def validate_config(self) -> List[str]:
        """Validate configuration, return list of warnings"""
        warnings = []

        if not self.is_development and not self.redis_url:
            warnings.append("REDIS_URL not set: token revocation is database-only and jobs run inline")

        if self.require_intake_payment and self.is_development:
            warnings.append("REQUIRE_INTAKE_PAYMENT=true in development: case reports need a paid invoice")

        return warnings


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
