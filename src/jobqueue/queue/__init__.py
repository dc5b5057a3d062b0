"""
Background Job Queue

Provider-agnostic queue for running long jobs off the request path:
- Abstract provider interface (add / process / get_job / close)
- In-memory provider for development and tests
- AWS SQS provider for production (long polling, visibility timeout, DLQ)
- Explicit retry policy
- Configuration-driven provider selection
"""

from jobqueue.queue.base import (
    Job,
    JobResult,
    JobStatus,
    ProcessOptions,
    Processor,
    QueueProvider,
    QueueStats,
)
from jobqueue.queue.errors import (
    EnqueueError,
    ProcessingError,
    QueueConfigError,
    QueueError,
    TransientPollError,
)
from jobqueue.queue.retry import BackoffStrategy, RetryPolicy
from jobqueue.queue.memory import InMemoryQueueProvider, QueueManager
from jobqueue.queue.sqs import SQSConfig, SQSQueueProvider
from jobqueue.queue.factory import create_queue_provider

__all__ = [
    "Job",
    "JobResult",
    "JobStatus",
    "ProcessOptions",
    "Processor",
    "QueueProvider",
    "QueueStats",
    "EnqueueError",
    "ProcessingError",
    "QueueConfigError",
    "QueueError",
    "TransientPollError",
    "BackoffStrategy",
    "RetryPolicy",
    "InMemoryQueueProvider",
    "QueueManager",
    "SQSConfig",
    "SQSQueueProvider",
    "create_queue_provider",
]
