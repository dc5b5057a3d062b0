"""
Queue Worker

Background worker that runs one consumption loop per registered queue.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional
from loguru import logger

from jobqueue.queue.base import Job, JobResult, ProcessOptions, Processor, QueueProvider
from jobqueue.queue.retry import RetryPolicy


def wrap_handler(handler: Callable[[Job], Awaitable[Any]]) -> Processor:
    """
    Adapt a plain async handler into a queue processor.

    The handler's return value becomes JobResult.ok(data); an exception
    becomes JobResult.fail(message). Handlers must be idempotent: the
    queue may deliver the same job more than once.

    Args:
        handler: Async function doing the actual work for one job

    Returns:
        Processor suitable for QueueProvider.process()
    """
    async def processor(job: Job) -> JobResult:
        try:
            data = await handler(job)
        except Exception as e:
            logger.opt(exception=e).error(
                f"Job {job.id} failed in {getattr(handler, '__name__', 'handler')}: {e}"
            )
            return JobResult.fail(str(e) or type(e).__name__)

        return JobResult.ok(data)

    return processor


class QueueWorker:
    """
    Lifecycle owner for background job processing.

    Starts a process() loop per registered queue as a background task
    and stops them all through the provider's graceful close().

    Attributes:
        provider: Queue provider to consume from
        options: Default consumption options for every queue

    Usage:
        worker = QueueWorker(create_queue_provider())
        worker.register(PROPOSAL_GENERATE_JOB, wrap_handler(generate_proposal))
        await worker.start()
        ...
        await worker.stop()
    """

    def __init__(
        self,
        provider: QueueProvider,
        options: Optional[ProcessOptions] = None,
    ):
        """
        Initialize queue worker.

        Args:
            provider: Queue provider to consume from
            options: Default options passed to every process() call
        """
        self.provider = provider
        self.options = options
        self._processors: dict[str, tuple[Processor, Optional[ProcessOptions], Optional[RetryPolicy]]] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def queues(self) -> list[str]:
        """Registered queue names."""
        return list(self._processors)

    def register(
        self,
        queue_name: str,
        processor: Processor,
        options: Optional[ProcessOptions] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> None:
        """
        Register the processor for a queue.

        Must be called before start().

        Raises:
            RuntimeError: If the worker is already running
            ValueError: If the queue already has a processor
        """
        if self._running:
            raise RuntimeError("Cannot register processors on a running worker")
        if queue_name in self._processors:
            raise ValueError(f"Queue '{queue_name}' already has a processor")

        self._processors[queue_name] = (processor, options or self.options, retry_policy)

    async def start(self) -> None:
        """
        Start consuming every registered queue.

        Returns once the loops are scheduled; they keep running in the
        background until stop() is called.
        """
        if self._running:
            logger.warning("Worker already running")
            return

        if not self._processors:
            logger.warning("Worker started with no registered queues")

        self._running = True

        for queue_name, (processor, options, retry_policy) in self._processors.items():
            task = asyncio.create_task(
                self.provider.process(queue_name, processor, options, retry_policy),
                name=f"jobqueue:{queue_name}",
            )
            task.add_done_callback(self._on_loop_done)
            self._tasks[queue_name] = task

        # Let the loops reach their first poll before returning
        await asyncio.sleep(0)

        logger.info(f"🚀 Queue worker started for queues: {', '.join(self._processors) or '-'}")

    async def stop(self) -> None:
        """
        Stop the worker.

        Gracefully shuts down:
        1. Provider stops taking new jobs
        2. In-flight jobs get the provider's grace period to finish
        3. Loop tasks are awaited
        """
        if not self._running:
            return

        logger.info("Stopping queue worker...")
        self._running = False

        await self.provider.close()

        tasks = list(self._tasks.values())
        self._tasks.clear()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        logger.info("🛑 Queue worker stopped")

    def _on_loop_done(self, task: asyncio.Task) -> None:
        """Log a consumption loop that ended on its own."""
        if task.cancelled():
            return

        error = task.exception()
        if error is not None:
            logger.opt(exception=error).error(f"Queue loop {task.get_name()} crashed: {error}")
        elif self._running:
            logger.warning(f"Queue loop {task.get_name()} exited while worker is running")
