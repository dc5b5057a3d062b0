"""
In-Memory Queue Provider

In-process queue implementation for development and testing.
Uses asyncio primitives; all state is lost on restart.
"""

import asyncio
import json
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from loguru import logger

from jobqueue.config import get_settings
from jobqueue.queue.base import (
    Job,
    JobStatus,
    ProcessOptions,
    Processor,
    QueueProvider,
    QueueStats,
    run_processor,
)
from jobqueue.queue.errors import EnqueueError, ProcessingError
from jobqueue.queue.retry import RetryPolicy
from jobqueue.utils.metrics import Timer, metrics
from jobqueue.utils.observability import log_job_event


@dataclass
class _QueueCounters:
    completed: int = 0
    failed: int = 0
    dead_lettered: int = 0


class QueueManager:
    """
    Owner of the per-queue job lists.

    Holds one FIFO deque per queue name, an index of live jobs (pending
    or in flight) and a wake-up event per queue. Every mutation goes
    through the lock so request handlers calling add() cannot interleave
    with a consumption loop taking jobs.
    """

    def __init__(self):
        self._queues: dict[str, deque[Job]] = {}
        self._jobs: dict[str, Job] = {}
        self._counters: dict[str, _QueueCounters] = {}
        self._wakeups: dict[str, asyncio.Event] = {}
        self._lock = asyncio.Lock()

    def _wakeup(self, queue_name: str) -> asyncio.Event:
        return self._wakeups.setdefault(queue_name, asyncio.Event())

    async def put(self, job: Job) -> None:
        """Append a new job to the tail of its queue."""
        async with self._lock:
            self._queues.setdefault(job.name, deque()).append(job)
            self._jobs[job.id] = job
        self._wakeup(job.name).set()

    async def take_ready(self, queue_name: str) -> Optional[Job]:
        """
        Remove and return the first job whose retry delay has elapsed.

        Returns:
            Next deliverable job or None
        """
        async with self._lock:
            pending = self._queues.get(queue_name)
            if not pending:
                return None

            now = datetime.now(timezone.utc)
            for index, job in enumerate(pending):
                if job.available_at <= now:
                    del pending[index]
                    job.status = JobStatus.PROCESSING
                    return job

            return None

    async def requeue(self, job: Job, delay_seconds: float = 0.0) -> None:
        """Put a failed job back at the tail of its queue."""
        async with self._lock:
            job.status = JobStatus.PENDING
            job.available_at = datetime.now(timezone.utc) + timedelta(seconds=delay_seconds)
            self._queues.setdefault(job.name, deque()).append(job)
            self._counter(job.name).failed += 1
        self._wakeup(job.name).set()

    async def release(self, job: Job) -> None:
        """Put an interrupted job back at the head of its queue, not counted as a failure."""
        async with self._lock:
            job.status = JobStatus.PENDING
            job.available_at = datetime.now(timezone.utc)
            self._queues.setdefault(job.name, deque()).appendleft(job)
        self._wakeup(job.name).set()

    async def forget(self, job: Job) -> None:
        """Drop a job from the index without counting it."""
        async with self._lock:
            self._jobs.pop(job.id, None)

    async def complete(self, job: Job) -> None:
        """Forget an acknowledged job."""
        async with self._lock:
            job.status = JobStatus.COMPLETED
            self._jobs.pop(job.id, None)
            self._counter(job.name).completed += 1

    async def dead_letter(self, job: Job) -> None:
        """Forget a job that exhausted its retries."""
        async with self._lock:
            job.status = JobStatus.DEAD_LETTER
            self._jobs.pop(job.id, None)
            counters = self._counter(job.name)
            counters.failed += 1
            counters.dead_lettered += 1

    async def find(self, job_id: str) -> Optional[Job]:
        async with self._lock:
            return self._jobs.get(job_id)

    async def pending_count(self, queue_name: str) -> int:
        async with self._lock:
            return len(self._queues.get(queue_name, ()))

    async def stats(self, queue_name: str, in_flight: int) -> QueueStats:
        async with self._lock:
            counters = self._counters.get(queue_name, _QueueCounters())
            return QueueStats(
                queue=queue_name,
                pending=len(self._queues.get(queue_name, ())),
                in_flight=in_flight,
                completed=counters.completed,
                failed=counters.failed,
                dead_lettered=counters.dead_lettered,
            )

    async def wait_for_work(self, queue_name: str, timeout: float) -> None:
        """Sleep until a job is added/requeued or the timeout elapses."""
        event = self._wakeup(queue_name)
        try:
            await asyncio.wait_for(event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            pass
        finally:
            event.clear()

    def wake(self, queue_name: str) -> None:
        """Interrupt a wait_for_work() call, e.g. on shutdown."""
        self._wakeup(queue_name).set()

    async def clear(self) -> None:
        async with self._lock:
            self._queues.clear()
            self._jobs.clear()
            self._counters.clear()

    def _counter(self, queue_name: str) -> _QueueCounters:
        # Caller holds the lock
        return self._counters.setdefault(queue_name, _QueueCounters())


class InMemoryQueueProvider(QueueProvider):
    """
    In-memory queue provider.

    Suitable for:
    - Development
    - Tests
    - Single-instance deployments that can afford to lose queued jobs

    Not suitable for:
    - Production multi-instance deployments
    - Anything that must survive a restart

    Concurrency is a sliding window: up to `concurrency` jobs run at
    once per queue and a finished job's slot is refilled immediately.
    Failed jobs go back to the tail of the queue, so FIFO order only
    holds for first deliveries. Jobs that exhaust their retries are
    dropped; there is no dead-letter store.
    """

    def __init__(
        self,
        concurrency: Optional[int] = None,
        max_retries: Optional[int] = None,
        poll_interval: Optional[float] = None,
        shutdown_grace_seconds: Optional[float] = None,
        manager: Optional[QueueManager] = None,
    ):
        """
        Initialize in-memory provider.

        Args:
            concurrency: Default max in-flight jobs per queue
            max_retries: Default deliveries before a job is dropped
            poll_interval: Max seconds an idle loop sleeps before re-checking
            shutdown_grace_seconds: How long close() waits for in-flight jobs
            manager: Job storage; a private one is created if omitted
        """
        settings = get_settings()
        self._concurrency = concurrency or settings.queue_concurrency
        self._max_retries = max_retries or settings.queue_max_retries
        self._poll_interval = poll_interval if poll_interval is not None else settings.queue_poll_interval_seconds
        self._grace = (
            shutdown_grace_seconds
            if shutdown_grace_seconds is not None
            else settings.queue_shutdown_grace_seconds
        )
        self._manager = manager or QueueManager()
        self._active: dict[str, bool] = {}
        self._closing = False
        self._in_flight: dict[str, set[asyncio.Task]] = {}

        logger.info(f"In-memory queue initialized with concurrency {self._concurrency}")

    async def add(self, queue_name: str, data: Any) -> str:
        """
        Add a job to a queue.

        The payload must be JSON-serializable, same as for the SQS
        provider, so code developed against this backend keeps working
        in production.
        """
        try:
            json.dumps(data)
        except (TypeError, ValueError) as e:
            raise EnqueueError(queue_name, f"payload is not JSON-serializable: {e}") from e

        job = Job(name=queue_name, data=data)
        await self._manager.put(job)

        metrics.jobs_enqueued.inc(queue=queue_name)
        log_job_event("enqueued", job_id=job.id, queue_name=queue_name)

        return job.id

    async def process(
        self,
        queue_name: str,
        processor: Processor,
        options: Optional[ProcessOptions] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> None:
        """
        Consume a queue until stop_processing() or close() is called.
        """
        if self._active.get(queue_name):
            logger.warning(f"Queue '{queue_name}' already being processed")
            return

        concurrency = (options.concurrency if options and options.concurrency else None) or self._concurrency
        policy = retry_policy or RetryPolicy.from_options(options, self._max_retries)
        slots = asyncio.Semaphore(concurrency)
        in_flight = self._in_flight.setdefault(queue_name, set())

        self._active[queue_name] = True
        logger.info(
            f"🚀 Processing queue '{queue_name}' "
            f"(concurrency={concurrency}, max_attempts={policy.max_attempts})"
        )

        try:
            while self._active.get(queue_name):
                await slots.acquire()
                if not self._active.get(queue_name):
                    slots.release()
                    break

                job = await self._manager.take_ready(queue_name)
                if job is None:
                    slots.release()
                    await self._manager.wait_for_work(queue_name, self._poll_interval)
                    continue

                task = asyncio.create_task(
                    self._process_job(job, processor, policy, slots)
                )
                in_flight.add(task)
                task.add_done_callback(in_flight.discard)

            if in_flight:
                await asyncio.wait(set(in_flight))

        finally:
            self._active.pop(queue_name, None)
            logger.info(f"🛑 Stopped processing queue '{queue_name}'")

    async def _process_job(
        self,
        job: Job,
        processor: Processor,
        policy: RetryPolicy,
        slots: asyncio.Semaphore,
    ) -> None:
        """
        Deliver one job and settle it: acknowledge, requeue or drop.

        Never raises except on cancellation.
        """
        queue_name = job.name
        job.attempts += 1
        job.processed_on = datetime.now(timezone.utc)
        metrics.jobs_in_flight.inc(queue=queue_name)

        try:
            logger.info(f"Processing job {job.id} (attempt {job.attempts}/{policy.max_attempts})")

            with Timer(metrics.job_duration, queue=queue_name) as timer:
                await run_processor(job, processor)

            await self._manager.complete(job)
            metrics.jobs_completed.inc(queue=queue_name)
            log_job_event(
                "completed",
                job_id=job.id,
                queue_name=queue_name,
                attempts=job.attempts,
                duration_ms=timer.elapsed * 1000,
            )

        except asyncio.CancelledError:
            if self._closing:
                await self._manager.forget(job)
                logger.warning(f"Job {job.id} cancelled during shutdown (attempt {job.attempts})")
            else:
                await self._manager.release(job)
                logger.warning(f"Job {job.id} cancelled, returned to queue '{queue_name}'")
            raise

        except Exception as e:
            reason = str(e) or type(e).__name__
            job.failed_reason = reason
            metrics.jobs_failed.inc(queue=queue_name)

            if isinstance(e, ProcessingError):
                logger.error(f"❌ Job {job.id} failed (attempt {job.attempts}): {reason}")
            else:
                logger.opt(exception=e).error(
                    f"❌ Job {job.id} raised (attempt {job.attempts}): {reason}"
                )

            if policy.should_retry(job.attempts):
                delay = policy.delay_for(job.attempts)
                await self._manager.requeue(job, delay)
                log_job_event(
                    "retry",
                    job_id=job.id,
                    queue_name=queue_name,
                    attempts=job.attempts,
                    delay_seconds=delay,
                    error=reason,
                )
            else:
                await self._manager.dead_letter(job)
                metrics.jobs_dead_lettered.inc(queue=queue_name)
                log_job_event(
                    "dead_letter",
                    job_id=job.id,
                    queue_name=queue_name,
                    level="ERROR",
                    attempts=job.attempts,
                    max_attempts=policy.max_attempts,
                    error=reason,
                )

        finally:
            metrics.jobs_in_flight.dec(queue=queue_name)
            slots.release()

    async def get_job(self, job_id: str) -> Optional[Job]:
        """Find a pending or in-flight job. Settled jobs are forgotten."""
        return await self._manager.find(job_id)

    async def get_stats(self, queue_name: str) -> QueueStats:
        in_flight = len(self._in_flight.get(queue_name, ()))
        return await self._manager.stats(queue_name, in_flight=in_flight)

    async def stop_processing(self, queue_name: str) -> None:
        """
        Stop one queue's loop.

        Waits up to the shutdown grace period for its in-flight jobs,
        then cancels whatever is still running. Cancelled jobs go back
        to the head of the queue for the next process() call.
        """
        if not self._active.get(queue_name):
            return

        logger.info(f"Stopping queue '{queue_name}'...")
        self._active[queue_name] = False
        self._manager.wake(queue_name)
        await self._drain(set(self._in_flight.get(queue_name, ())))

    async def close(self) -> None:
        """
        Stop every loop, drain in-flight jobs and drop all queued jobs.
        """
        logger.info("Closing in-memory queue")
        self._closing = True

        try:
            for queue_name in list(self._active):
                self._active[queue_name] = False
                self._manager.wake(queue_name)

            tasks: set[asyncio.Task] = set()
            for in_flight in self._in_flight.values():
                tasks |= in_flight
            await self._drain(tasks)

            await self._manager.clear()
        finally:
            self._closing = False

    async def _drain(self, tasks: set[asyncio.Task]) -> None:
        """Wait for tasks (bounded by the grace period), cancel the rest."""
        if not tasks:
            return

        logger.info(f"Waiting for {len(tasks)} in-flight jobs to complete...")
        _, pending = await asyncio.wait(tasks, timeout=self._grace)

        if pending:
            logger.warning(f"Timeout waiting for jobs, cancelling {len(pending)} remaining")
            for task in pending:
                task.cancel()
            await asyncio.wait(pending)
