"""
Queue Errors

Exception hierarchy shared by all queue providers.
"""


class QueueError(Exception):
    """Base class for queue errors."""
    pass


class QueueConfigError(QueueError):
    """Raised when a provider cannot be built from the given configuration."""
    pass


class EnqueueError(QueueError):
    """
    Raised when add() fails on the underlying transport.

    Always propagated to the caller; the original exception is chained.
    """

    def __init__(self, queue_name: str, message: str):
        self.queue_name = queue_name
        super().__init__(f"Failed to enqueue job on '{queue_name}': {message}")


class ProcessingError(QueueError):
    """
    A processor reported failure or raised.

    Used inside consumption loops only; never escapes them.
    """

    def __init__(self, job_id: str, reason: str):
        self.job_id = job_id
        self.reason = reason
        super().__init__(reason)


class TransientPollError(QueueError):
    """A receive/poll call failed. Logged and retried after a backoff."""
    pass
