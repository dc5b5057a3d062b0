import itertools
import threading
import time
from dataclasses import dataclass, field
from typing import Optional

import pytest
from botocore.exceptions import ClientError

from jobqueue.queue import SQSConfig, SQSQueueProvider

QUEUE_URL = "https://sqs.us-east-2.amazonaws.com/123456789012/jobs"
FIFO_URL = "https://sqs.us-east-2.amazonaws.com/123456789012/jobs.fifo"
DLQ_URL = "https://sqs.us-east-2.amazonaws.com/123456789012/jobs-dlq"


@dataclass
class _StoredMessage:
    message_id: str
    queue_url: str
    body: str
    attributes: dict
    receive_count: int = 0
    visible_at: float = 0.0
    receipt_handle: Optional[str] = None
    extra: dict = field(default_factory=dict)


class FakeSQSClient:
    """
    Thread-safe stand-in for a boto3 SQS client.

    Simulates visibility timeouts, ApproximateReceiveCount and receipt
    handles. Long polls return after a few milliseconds when empty.
    """

    def __init__(self, empty_poll_delay: float = 0.005):
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._messages: list[_StoredMessage] = []
        self.empty_poll_delay = empty_poll_delay
        self.sent: list[dict] = []
        self.deleted: list[str] = []
        self.visibility_changes: list[tuple[str, int]] = []
        self.receive_calls: list[dict] = []
        self.receive_errors = 0
        self.send_error: Optional[Exception] = None
        self.dlq_depth = 0

    @staticmethod
    def client_error(operation: str, code: str = "ThrottlingException") -> ClientError:
        return ClientError({"Error": {"Code": code, "Message": "Rate exceeded"}}, operation)

    def inject_raw(self, body: str, queue_url: str = QUEUE_URL) -> str:
        """Put a message on the queue bypassing send_message()."""
        with self._lock:
            message_id = f"msg-{next(self._ids)}"
            self._messages.append(_StoredMessage(message_id, queue_url, body, {}))
            return message_id

    def send_message(self, **params) -> dict:
        if self.send_error is not None:
            raise self.send_error
        with self._lock:
            self.sent.append(params)
            message_id = f"msg-{next(self._ids)}"
            self._messages.append(_StoredMessage(
                message_id,
                params["QueueUrl"],
                params["MessageBody"],
                params.get("MessageAttributes", {}),
            ))
            return {"MessageId": message_id}

    def receive_message(self, **params) -> dict:
        with self._lock:
            self.receive_calls.append(params)
            if self.receive_errors > 0:
                self.receive_errors -= 1
                raise self.client_error("ReceiveMessage")

            now = time.monotonic()
            batch = []
            for message in self._messages:
                if len(batch) >= params["MaxNumberOfMessages"]:
                    break
                if message.queue_url != params["QueueUrl"] or message.visible_at > now:
                    continue
                message.receive_count += 1
                message.visible_at = now + params["VisibilityTimeout"]
                message.receipt_handle = f"rh-{message.message_id}-{message.receive_count}"
                batch.append({
                    "MessageId": message.message_id,
                    "ReceiptHandle": message.receipt_handle,
                    "Body": message.body,
                    "Attributes": {"ApproximateReceiveCount": str(message.receive_count)},
                    "MessageAttributes": message.attributes,
                })

        if not batch:
            time.sleep(self.empty_poll_delay)
            return {}
        return {"Messages": batch}

    def delete_message(self, QueueUrl: str, ReceiptHandle: str) -> dict:
        with self._lock:
            self.deleted.append(ReceiptHandle)
            self._messages = [m for m in self._messages if m.receipt_handle != ReceiptHandle]
            return {}

    def change_message_visibility(self, QueueUrl: str, ReceiptHandle: str, VisibilityTimeout: int) -> dict:
        with self._lock:
            self.visibility_changes.append((ReceiptHandle, VisibilityTimeout))
            for message in self._messages:
                if message.receipt_handle == ReceiptHandle:
                    message.visible_at = time.monotonic() + VisibilityTimeout
            return {}

    def get_queue_attributes(self, QueueUrl: str, AttributeNames: list[str]) -> dict:
        with self._lock:
            if QueueUrl == DLQ_URL:
                return {"Attributes": {"ApproximateNumberOfMessages": str(self.dlq_depth)}}

            now = time.monotonic()
            mine = [m for m in self._messages if m.queue_url == QueueUrl]
            visible = sum(1 for m in mine if m.visible_at <= now)
            return {"Attributes": {
                "ApproximateNumberOfMessages": str(visible),
                "ApproximateNumberOfMessagesNotVisible": str(len(mine) - visible),
            }}

    def remaining(self, queue_url: str = QUEUE_URL) -> int:
        with self._lock:
            return sum(1 for m in self._messages if m.queue_url == queue_url)


@pytest.fixture
def fake_sqs():
    return FakeSQSClient()


@pytest.fixture
def sqs_config():
    """Immediate redelivery and fast backoff so tests stay quick."""
    return SQSConfig(
        queue_url=QUEUE_URL,
        dlq_url=DLQ_URL,
        region="us-east-2",
        wait_time_seconds=0,
        max_messages=5,
        visibility_timeout=0,
        max_receive_count=3,
        error_backoff_seconds=0.01,
        shutdown_grace_seconds=2.0,
    )


@pytest.fixture
async def sqs_provider(sqs_config, fake_sqs):
    provider = SQSQueueProvider(sqs_config, client=fake_sqs)
    yield provider
    await provider.close()
