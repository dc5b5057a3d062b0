"""
Queue Provider Selection

Builds the configured queue provider.
"""

from typing import Optional

from loguru import logger

from jobqueue.config import Settings, get_settings
from jobqueue.queue.base import QueueProvider
from jobqueue.queue.errors import QueueConfigError
from jobqueue.queue.memory import InMemoryQueueProvider
from jobqueue.queue.sqs import SQSConfig, SQSQueueProvider


def create_queue_provider(settings: Optional[Settings] = None) -> QueueProvider:
    """
    Create the queue provider selected by QUEUE_PROVIDER.

    Args:
        settings: Settings to read (defaults to the cached settings)

    Returns:
        InMemoryQueueProvider for "memory", SQSQueueProvider for "sqs"

    Raises:
        QueueConfigError: Unknown provider, or SQS without SQS_QUEUE_URL
    """
    settings = settings or get_settings()
    provider = (settings.queue_provider or "").strip().lower()

    logger.info(f"Creating queue provider: {provider}")

    if provider == "memory":
        return InMemoryQueueProvider(
            concurrency=settings.queue_concurrency,
            max_retries=settings.queue_max_retries,
            poll_interval=settings.queue_poll_interval_seconds,
            shutdown_grace_seconds=settings.queue_shutdown_grace_seconds,
        )

    if provider == "sqs":
        if not settings.sqs_queue_url:
            raise QueueConfigError("SQS_QUEUE_URL is required for QUEUE_PROVIDER=sqs")
        return SQSQueueProvider(SQSConfig.from_settings(settings))

    raise QueueConfigError(f"Unknown QUEUE_PROVIDER: {settings.queue_provider}")
