"""
AWS SQS Queue Provider

Durable queue implementation for production deployments.
Supports long polling, FIFO queues and receive-count based dead-lettering.

Delivery is at-least-once: a received message is hidden for the
visibility timeout and comes back if it is not deleted in time.
"""

import asyncio
import json
import time
from datetime import datetime, timezone
from typing import Any, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger
from pydantic import BaseModel, Field

from jobqueue.config import Settings, get_settings
from jobqueue.queue.base import (
    Job,
    JobStatus,
    ProcessOptions,
    Processor,
    QueueProvider,
    QueueStats,
    new_job_id,
    run_processor,
)
from jobqueue.queue.errors import (
    EnqueueError,
    ProcessingError,
    QueueConfigError,
    QueueError,
    TransientPollError,
)
from jobqueue.queue.retry import RetryPolicy
from jobqueue.utils.metrics import Timer, metrics
from jobqueue.utils.observability import log_job_event

# SQS hard limit for MaxNumberOfMessages
SQS_MAX_BATCH = 10

# How often close() re-checks whether the loops have exited
CLOSE_POLL_INTERVAL = 0.1


class SQSConfig(BaseModel):
    """
    SQS provider configuration.

    Attributes:
        queue_url: Default queue endpoint (".fifo" suffix enables FIFO mode)
        dlq_url: Dead-letter queue endpoint, only read for statistics
        region: AWS region
        wait_time_seconds: Long-poll wait per receive
        max_messages: Messages per receive; bounds in-flight jobs per loop
        visibility_timeout: Seconds a received message stays hidden
        max_receive_count: Deliveries before a failing message is deleted
        error_backoff_seconds: Pause after a failed receive
        shutdown_grace_seconds: Extra time close() allows beyond one long poll
        queue_urls: Per-queue-name endpoint overrides
    """
    queue_url: Optional[str] = None
    dlq_url: Optional[str] = None
    region: Optional[str] = None
    wait_time_seconds: int = Field(default=20, ge=0, le=20)
    max_messages: int = Field(default=5, ge=1, le=SQS_MAX_BATCH)
    visibility_timeout: int = Field(default=900, ge=0)
    max_receive_count: int = Field(default=3, ge=1)
    error_backoff_seconds: float = Field(default=5.0, ge=0)
    shutdown_grace_seconds: float = Field(default=30.0, ge=0)
    queue_urls: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "SQSConfig":
        settings = settings or get_settings()
        return cls(
            queue_url=settings.sqs_queue_url,
            dlq_url=settings.sqs_dlq_url,
            region=settings.aws_region,
            wait_time_seconds=settings.sqs_wait_time_seconds,
            max_messages=settings.sqs_max_messages,
            visibility_timeout=settings.sqs_visibility_timeout,
            max_receive_count=settings.sqs_max_receive_count,
            error_backoff_seconds=settings.sqs_error_backoff_seconds,
            shutdown_grace_seconds=settings.queue_shutdown_grace_seconds,
            queue_urls=settings.sqs_queue_urls,
        )


class SQSQueueProvider(QueueProvider):
    """
    AWS SQS queue provider.

    One long-poll loop per queue name. Each receive fetches up to
    max_messages messages and processes them concurrently; the loop
    waits for the whole batch before polling again.

    Acknowledgment:
    - Success: message deleted
    - Failure: left alone, reappears when the visibility timeout expires
    - Failure at max_receive_count deliveries: deleted from the main queue

    Usage:
        provider = SQSQueueProvider(SQSConfig(queue_url="https://sqs..."))
        job_id = await provider.add("proposal", {"proposalId": "p-1"})
        await provider.process("proposal", handle_proposal)
    """

    def __init__(self, config: SQSConfig, client: Any = None):
        """
        Initialize SQS provider.

        Args:
            config: Provider configuration
            client: Pre-built boto3 SQS client (tests inject a fake)

        Raises:
            QueueConfigError: If no queue URL is configured
        """
        if not config.queue_url:
            raise QueueConfigError("SQS queue URL is required")

        self._config = config
        self._client = client or boto3.client("sqs", region_name=config.region)
        self._processing: dict[str, bool] = {}
        self._should_stop = False
        self._stop_event = asyncio.Event()
        self._completed: dict[str, int] = {}
        self._failed: dict[str, int] = {}
        self._dead_lettered: dict[str, int] = {}

        logger.info(f"SQS queue initialized: {config.queue_url}")

    def _url_for(self, queue_name: str) -> str:
        return self._config.queue_urls.get(queue_name, self._config.queue_url)

    @staticmethod
    def _bump(counter: dict[str, int], queue_name: str) -> None:
        counter[queue_name] = counter.get(queue_name, 0) + 1

    async def add(self, queue_name: str, data: Any) -> str:
        """
        Send a job message.

        Body: {"jobName", "jobId", "data", "timestamp"} as JSON, with
        JobName/JobId string attributes for filtering. FIFO queues get
        the queue name as group id and the job id as deduplication id.
        """
        job_id = new_job_id()

        try:
            message_body = json.dumps({
                "jobName": queue_name,
                "jobId": job_id,
                "data": data,
                "timestamp": int(time.time() * 1000),
            })
        except (TypeError, ValueError) as e:
            raise EnqueueError(queue_name, f"payload is not JSON-serializable: {e}") from e

        queue_url = self._url_for(queue_name)
        params: dict[str, Any] = {
            "QueueUrl": queue_url,
            "MessageBody": message_body,
            "MessageAttributes": {
                "JobName": {"DataType": "String", "StringValue": queue_name},
                "JobId": {"DataType": "String", "StringValue": job_id},
            },
        }

        if queue_url.endswith(".fifo"):
            params["MessageGroupId"] = queue_name
            params["MessageDeduplicationId"] = job_id

        try:
            result = await asyncio.to_thread(self._client.send_message, **params)
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to send job {job_id} to SQS: {e}")
            raise EnqueueError(queue_name, str(e)) from e

        metrics.jobs_enqueued.inc(queue=queue_name)
        log_job_event(
            "enqueued",
            job_id=job_id,
            queue_name=queue_name,
            message_id=result.get("MessageId"),
        )

        return job_id

    async def process(
        self,
        queue_name: str,
        processor: Processor,
        options: Optional[ProcessOptions] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> None:
        """
        Long-poll a queue until close() is called.

        options.concurrency, when given, replaces max_messages (capped
        at the SQS batch limit of 10).

        Each queue name needs its own endpoint (SQSConfig.queue_urls):
        a message for another job name counts as a failed delivery.

        Raises:
            QueueConfigError: If another queue is already consuming the
                same endpoint on this provider
        """
        if self._processing.get(queue_name):
            logger.warning(f"Already processing queue '{queue_name}'")
            return

        queue_url = self._url_for(queue_name)
        shared_with = next(
            (
                name for name, active in self._processing.items()
                if active and name != queue_name and self._url_for(name) == queue_url
            ),
            None,
        )
        if shared_with is not None:
            raise QueueConfigError(
                f"Queue '{queue_name}' shares SQS endpoint {queue_url} with '{shared_with}'; "
                f"map each job name to its own URL with SQS_QUEUE_URLS"
            )

        options = options or ProcessOptions()
        wait_time = (
            options.wait_time_seconds
            if options.wait_time_seconds is not None
            else self._config.wait_time_seconds
        )
        visibility = (
            options.visibility_timeout
            if options.visibility_timeout is not None
            else self._config.visibility_timeout
        )
        max_messages = min(options.concurrency or self._config.max_messages, SQS_MAX_BATCH)
        policy = retry_policy or RetryPolicy.from_options(options, self._config.max_receive_count)

        self._processing[queue_name] = True
        logger.info(
            f"🚀 Starting SQS long-polling for '{queue_name}' "
            f"(wait: {wait_time}s, visibility: {visibility}s, batch: {max_messages})"
        )

        try:
            while not self._should_stop:
                try:
                    messages = await self._receive(queue_url, max_messages, wait_time, visibility)

                    if not messages:
                        logger.debug("No messages received, continuing long poll...")
                        continue

                    logger.info(f"Received {len(messages)} messages from SQS")
                    await asyncio.gather(*(
                        self._process_message(message, processor, queue_name, queue_url, policy)
                        for message in messages
                    ))

                except TransientPollError as e:
                    metrics.poll_errors.inc(queue=queue_name)
                    logger.warning(f"SQS receive failed for '{queue_name}': {e}")
                    await self._backoff()

                except Exception as e:
                    metrics.poll_errors.inc(queue=queue_name)
                    logger.opt(exception=e).error(f"Error receiving/processing messages: {e}")
                    await self._backoff()

        finally:
            self._processing[queue_name] = False
            logger.info(f"🛑 Stopped processing queue '{queue_name}'")

    async def _receive(
        self,
        queue_url: str,
        max_messages: int,
        wait_time: int,
        visibility: int,
    ) -> list[dict]:
        try:
            response = await asyncio.to_thread(
                self._client.receive_message,
                QueueUrl=queue_url,
                MaxNumberOfMessages=max_messages,
                WaitTimeSeconds=wait_time,
                VisibilityTimeout=visibility,
                AttributeNames=["All"],
                MessageAttributeNames=["All"],
            )
        except (BotoCoreError, ClientError) as e:
            raise TransientPollError(str(e)) from e

        return response.get("Messages") or []

    async def _backoff(self) -> None:
        """Pause before the next receive; cut short by close()."""
        try:
            await asyncio.wait_for(
                self._stop_event.wait(),
                timeout=self._config.error_backoff_seconds,
            )
        except asyncio.TimeoutError:
            pass

    @staticmethod
    def _parse(message: dict) -> Job:
        """
        Rebuild a Job from an SQS message.

        Raises:
            ProcessingError: If the body is not a job message
        """
        attributes = message.get("Attributes") or {}
        receive_count = int(attributes.get("ApproximateReceiveCount", "1"))

        try:
            body = json.loads(message["Body"])
            created_at = datetime.fromtimestamp(body["timestamp"] / 1000, tz=timezone.utc)
            return Job(
                id=body["jobId"],
                name=body["jobName"],
                data=body.get("data"),
                attempts=receive_count,
                status=JobStatus.PROCESSING,
                created_at=created_at,
                processed_on=datetime.now(timezone.utc),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ProcessingError(
                message.get("MessageId", "unknown"),
                f"Malformed job message: {e}",
            ) from e

    async def _process_message(
        self,
        message: dict,
        processor: Processor,
        queue_name: str,
        queue_url: str,
        policy: RetryPolicy,
    ) -> None:
        """
        Process one message and acknowledge it according to the outcome.

        Never raises.
        """
        receipt_handle = message["ReceiptHandle"]
        attributes = message.get("Attributes") or {}
        receive_count = int(attributes.get("ApproximateReceiveCount", "1"))
        job_id = message.get("MessageId", "unknown")

        try:
            job = self._parse(message)
            job_id = job.id

            if job.name != queue_name:
                raise ProcessingError(
                    job.id,
                    f"Job for queue '{job.name}' received on the '{queue_name}' endpoint",
                )

            logger.info(f"Processing job {job.id} from SQS (attempt {job.attempts})")
            metrics.jobs_in_flight.inc(queue=queue_name)
            try:
                with Timer(metrics.job_duration, queue=queue_name):
                    await run_processor(job, processor)
            finally:
                metrics.jobs_in_flight.dec(queue=queue_name)

        except Exception as e:
            self._bump(self._failed, queue_name)
            metrics.jobs_failed.inc(queue=queue_name)
            if isinstance(e, ProcessingError):
                logger.error(f"❌ Failed to process job {job_id}: {e}")
            else:
                logger.opt(exception=e).error(f"❌ Failed to process job {job_id}: {e}")

            await self._settle_failure(job_id, queue_name, queue_url, receipt_handle, receive_count, policy)
            return

        try:
            await asyncio.to_thread(
                self._client.delete_message,
                QueueUrl=queue_url,
                ReceiptHandle=receipt_handle,
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Job {job_id} completed but could not be deleted, it will be redelivered: {e}")
            return

        self._bump(self._completed, queue_name)
        metrics.jobs_completed.inc(queue=queue_name)
        logger.info(f"✅ Job {job_id} completed and removed from queue")

    async def _settle_failure(
        self,
        job_id: str,
        queue_name: str,
        queue_url: str,
        receipt_handle: str,
        receive_count: int,
        policy: RetryPolicy,
    ) -> None:
        if not policy.should_retry(receive_count):
            logger.error(
                f"Job {job_id} exceeded max retries ({receive_count}/{policy.max_attempts}), "
                f"deleting from main queue"
            )
            try:
                await asyncio.to_thread(
                    self._client.delete_message,
                    QueueUrl=queue_url,
                    ReceiptHandle=receipt_handle,
                )
            except (BotoCoreError, ClientError) as e:
                logger.error(f"Could not delete exhausted job {job_id}: {e}")
                return

            self._bump(self._dead_lettered, queue_name)
            metrics.jobs_dead_lettered.inc(queue=queue_name)
            log_job_event(
                "dead_letter",
                job_id=job_id,
                queue_name=queue_name,
                level="ERROR",
                attempts=receive_count,
                max_attempts=policy.max_attempts,
            )
            return

        delay = policy.delay_for(receive_count)
        if delay > 0:
            await self._change_visibility(queue_url, receipt_handle, int(delay))
            logger.info(f"Job {job_id} will be redelivered in {int(delay)}s")
        # Otherwise the visibility timeout brings it back

    async def _change_visibility(self, queue_url: str, receipt_handle: str, seconds: int) -> None:
        try:
            await asyncio.to_thread(
                self._client.change_message_visibility,
                QueueUrl=queue_url,
                ReceiptHandle=receipt_handle,
                VisibilityTimeout=seconds,
            )
        except (BotoCoreError, ClientError) as e:
            logger.warning(f"Could not change message visibility: {e}")

    async def get_job(self, job_id: str) -> Optional[Job]:
        """
        Not supported: SQS has no lookup by job ID.

        Always returns None.
        """
        logger.warning(f"getJob not supported for SQS - returning None for {job_id}")
        return None

    async def get_stats(self, queue_name: str) -> QueueStats:
        """
        Approximate queue depth from SQS plus this instance's counters.

        Raises:
            QueueError: If SQS cannot be queried
        """
        queue_url = self._url_for(queue_name)

        try:
            response = await asyncio.to_thread(
                self._client.get_queue_attributes,
                QueueUrl=queue_url,
                AttributeNames=[
                    "ApproximateNumberOfMessages",
                    "ApproximateNumberOfMessagesNotVisible",
                ],
            )
            attributes = response.get("Attributes", {})

            dead_letter_pending = None
            if self._config.dlq_url:
                dlq = await asyncio.to_thread(
                    self._client.get_queue_attributes,
                    QueueUrl=self._config.dlq_url,
                    AttributeNames=["ApproximateNumberOfMessages"],
                )
                dead_letter_pending = int(dlq.get("Attributes", {}).get("ApproximateNumberOfMessages", 0))
        except (BotoCoreError, ClientError) as e:
            raise QueueError(f"Failed to read SQS attributes for '{queue_name}': {e}") from e

        return QueueStats(
            queue=queue_name,
            pending=int(attributes.get("ApproximateNumberOfMessages", 0)),
            in_flight=int(attributes.get("ApproximateNumberOfMessagesNotVisible", 0)),
            completed=self._completed.get(queue_name, 0),
            failed=self._failed.get(queue_name, 0),
            dead_lettered=self._dead_lettered.get(queue_name, 0),
            dead_letter_pending=dead_letter_pending,
        )

    async def close(self) -> None:
        """
        Stop all loops and wait for the current receive cycles to finish.

        Bounded by one long-poll wait plus the shutdown grace period.
        """
        logger.info("Closing SQS queue provider")
        self._should_stop = True
        self._stop_event.set()

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._config.wait_time_seconds + self._config.shutdown_grace_seconds

        while any(self._processing.values()):
            if loop.time() >= deadline:
                logger.warning("Timeout waiting for SQS loops to stop")
                break
            await asyncio.sleep(CLOSE_POLL_INTERVAL)
