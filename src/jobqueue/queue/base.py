"""
Base Queue Interface

Provider-agnostic contract for background job queues, plus the value
types that flow through it.
"""

import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional
from pydantic import BaseModel, Field

from jobqueue.queue.errors import ProcessingError

if TYPE_CHECKING:
    from jobqueue.queue.retry import RetryPolicy


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_job_id() -> str:
    """Opaque, process-unique job identifier."""
    return str(uuid.uuid4())


class JobStatus(str, Enum):
    """Job processing status."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    DEAD_LETTER = "dead_letter"


class Job(BaseModel):
    """
    One unit of background work.

    Attributes:
        id: Unique job identifier
        name: Queue (job type) the job was added to
        data: JSON-serializable payload
        attempts: Deliveries to a processor so far
        status: Current processing status
        created_at: When the job was added
        available_at: Earliest time the job may be delivered again
        processed_on: When the latest delivery started
        failed_reason: Error from the latest failed delivery
    """

    id: str = Field(default_factory=new_job_id)
    name: str
    data: Any = None
    attempts: int = Field(default=0, ge=0)
    status: JobStatus = JobStatus.PENDING
    created_at: datetime = Field(default_factory=_utcnow)
    available_at: datetime = Field(default_factory=_utcnow)
    processed_on: Optional[datetime] = None
    failed_reason: Optional[str] = None


class JobResult(BaseModel):
    """
    Outcome of one processor invocation.

    Build with JobResult.ok() / JobResult.fail() rather than setting
    the fields by hand.
    """
    success: bool
    data: Any = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None) -> "JobResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> "JobResult":
        return cls(success=False, error=error or "Job failed")


class ProcessOptions(BaseModel):
    """
    Options for a consumption loop. None means provider default.

    Attributes:
        concurrency: Max processor invocations in flight (SQS: messages per receive)
        max_retries: Deliveries allowed before the job is dead-lettered
        visibility_timeout: Seconds a received SQS message stays hidden
        wait_time_seconds: SQS long-poll wait
    """
    concurrency: Optional[int] = Field(default=None, ge=1)
    max_retries: Optional[int] = Field(default=None, ge=1)
    visibility_timeout: Optional[int] = Field(default=None, ge=0)
    wait_time_seconds: Optional[int] = Field(default=None, ge=0, le=20)


class QueueStats(BaseModel):
    """
    Queue statistics.

    Attributes:
        queue: Queue name
        pending: Jobs waiting for delivery (approximate for SQS)
        in_flight: Jobs currently held by a processor (approximate for SQS)
        completed: Jobs acknowledged by this provider instance
        failed: Failed processor invocations seen by this provider instance
        dead_lettered: Jobs removed after exhausting retries
        dead_letter_pending: Messages sitting in the configured DLQ, if known
    """
    queue: str
    pending: int = 0
    in_flight: int = 0
    completed: int = 0
    failed: int = 0
    dead_lettered: int = 0
    dead_letter_pending: Optional[int] = None


Processor = Callable[[Job], Awaitable[JobResult]]


class QueueProvider(ABC):
    """
    Abstract job queue interface.

    Delivery is at-least-once: processors must tolerate running more
    than once for the same job.

    Implementations must provide:
    - add: Enqueue a job without waiting for it to be processed
    - process: Long-running consumption loop for one queue
    - get_job: Best-effort job lookup
    - get_stats: Current queue statistics
    - close: Graceful shutdown
    """

    @abstractmethod
    async def add(self, queue_name: str, data: Any) -> str:
        """
        Add a job to a queue.

        Args:
            queue_name: Name/type of the job
            data: JSON-serializable payload

        Returns:
            Job ID

        Raises:
            EnqueueError: If the underlying transport fails
        """
        pass

    @abstractmethod
    async def process(
        self,
        queue_name: str,
        processor: Processor,
        options: Optional[ProcessOptions] = None,
        retry_policy: Optional["RetryPolicy"] = None,
    ) -> None:
        """
        Continuously consume jobs from a queue.

        Returns only after the loop is stopped via close(). A second
        concurrent call for the same queue name is logged and ignored.

        Args:
            queue_name: Queue to consume
            processor: Async function executing one job
            options: Consumption options
            retry_policy: Retry budget and backoff; defaults to
                options.max_retries (or the provider default) with no backoff
        """
        pass

    @abstractmethod
    async def get_job(self, job_id: str) -> Optional[Job]:
        """
        Look up a job by ID.

        Returns:
            The job, or None if unknown or unsupported by the backend
        """
        pass

    @abstractmethod
    async def get_stats(self, queue_name: str) -> QueueStats:
        """
        Get statistics for a queue.

        Args:
            queue_name: Queue to inspect
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """
        Stop consuming and release resources.

        Halts intake of new jobs and waits a bounded grace period
        for in-flight jobs to finish.
        """
        pass


async def run_processor(job: Job, processor: Processor) -> JobResult:
    """
    Invoke a processor and insist on a successful JobResult.

    Raises:
        ProcessingError: If the processor reported failure or returned
            something other than a JobResult. Exceptions raised by the
            processor itself propagate unchanged.
    """
    outcome = await processor(job)

    if not isinstance(outcome, JobResult):
        raise ProcessingError(
            job.id,
            f"Processor returned {type(outcome).__name__}, expected JobResult",
        )
    if not outcome.success:
        raise ProcessingError(job.id, outcome.error or "Job failed")

    return outcome
