# app/core/config.py
"""Application configuration using Pydantic."""
from pydantic_settings import BaseSettings
from typing import List

class Settings(BaseSettings):
    database_url: str
    redis_url: str = 'redis://localhost:6379/0'

    app_name: str = 'enrollment_service'
    app_version: str = '1.0.0'
    environment: str = 'development'
    log_level: str = 'info'
    allowed_origins: List[str] = ['*']

    # Post-commit cache invalidation
    cache_enabled: bool = True
    cache_ttl: int = 300

    # Class sizing used by auto-assignment and promotion when the caller does not pass one
    default_max_students_per_class: int = 30

    model_config = {
        'env_file': '.env',
        'extra': 'ignore'
    }

settings = Settings()
