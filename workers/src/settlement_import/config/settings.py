"""
Configuration settings for the settlement import workers
"""
from typing import Optional, Dict, Any
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Configuration settings for the import pipeline"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="SETTLEMENT_IMPORT_",
        extra="ignore",
    )

    # Redis/Celery Configuration
    redis_url: str = "redis://localhost:6379/0"
    celery_broker_url: Optional[str] = None
    celery_result_backend: Optional[str] = None

    # Persistence sink
    supabase_url: str = ""
    supabase_service_role_key: str = ""
    supabase_primary_key: str = "id"

    # Ingestion
    max_file_size_mb: int = 100
    max_rows_per_file: int = 1000000
    encoding_sample_bytes: int = 50000

    # Profiling
    profile_sample_values: int = 5
    min_detection_confidence: float = 0.6

    # Validation defaults
    default_batch_size: int = 1000
    default_max_errors: int = 100
    default_fuzzy_threshold: int = 85
    default_sample_size_percent: int = 10

    # Progress
    progress_poll_interval_seconds: float = 1.0

    # Task execution
    job_timeout_minutes: int = 30

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    # Environment
    environment: str = "development"
    debug: bool = False

    def __init__(self, **kwargs):
        super().__init__(**kwargs)

        # Set default celery URLs if not provided
        if not self.celery_broker_url:
            self.celery_broker_url = self.redis_url
        if not self.celery_result_backend:
            self.celery_result_backend = self.redis_url

    @property
    def celery_config(self) -> Dict[str, Any]:
        """Get Celery configuration dictionary"""
        return {
            "broker_url": self.celery_broker_url,
            "result_backend": self.celery_result_backend,
            "task_serializer": "json",
            "accept_content": ["json"],
            "result_serializer": "json",
            "timezone": "UTC",
            "enable_utc": True,
            "task_track_started": True,
            "task_time_limit": self.job_timeout_minutes * 60,
            "task_soft_time_limit": (self.job_timeout_minutes - 2) * 60,
            "worker_prefetch_multiplier": 1,
            "task_acks_late": True,
            "task_routes": {
                "settlement_import.tasks.profile_file": {"queue": "profiling_tasks"},
                "settlement_import.tasks.validate_file": {"queue": "validation_tasks"},
                "settlement_import.tasks.deploy_file": {"queue": "deployment_tasks"},
            }
        }

    @property
    def processing_config(self) -> Dict[str, Any]:
        """Get processing configuration dictionary"""
        return {
            "max_file_size_mb": self.max_file_size_mb,
            "max_rows_per_file": self.max_rows_per_file,
            "default_batch_size": self.default_batch_size,
            "default_max_errors": self.default_max_errors,
            "default_fuzzy_threshold": self.default_fuzzy_threshold,
            "progress_poll_interval_seconds": self.progress_poll_interval_seconds,
        }


# Global settings instance
settings = Settings()
