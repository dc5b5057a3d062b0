"""
Centralized Configuration System
Environment-aware settings for the job queue providers and workers.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Literal, Optional


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="allow"
    )
    """
    Queue configuration.
    Loads from environment variables with sensible defaults.
    """

    # ============================================
    # PROVIDER SELECTION
    # ============================================
    queue_provider: Literal["memory", "sqs"] = "memory"

    # ============================================
    # AWS SQS (durable backend)
    # ============================================
    sqs_queue_url: Optional[str] = None
    # Per-job-name endpoints as JSON, e.g. {"transcription": "https://sqs.../transcription"}
    sqs_queue_urls: dict[str, str] = {}
    sqs_dlq_url: Optional[str] = None
    aws_region: str = "us-east-2"
    sqs_wait_time_seconds: int = 20       # Long polling, SQS max is 20
    sqs_max_messages: int = 5             # Per receive, SQS max is 10
    sqs_visibility_timeout: int = 900     # 15 minutes
    sqs_max_receive_count: int = 3        # Deliveries before removal from main queue
    sqs_error_backoff_seconds: float = 5.0

    # ============================================
    # IN-MEMORY (local fallback)
    # ============================================
    queue_concurrency: int = 3
    queue_max_retries: int = 3
    queue_poll_interval_seconds: float = 1.0
    queue_shutdown_grace_seconds: float = 30.0

    # ============================================
    # LOGGING
    # ============================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    enable_structured_logging: bool = False  # Set to True for production JSON logs

    # ============================================
    # ENVIRONMENT
    # ============================================
    environment: Literal["development", "staging", "production", "test"] = "development"


@lru_cache()
def get_settings() -> Settings:
    """
    Singleton pattern for settings.
    Uses LRU cache to ensure only one Settings instance exists.
    """
    return Settings()


# Convenience accessor for common use
settings = get_settings()
