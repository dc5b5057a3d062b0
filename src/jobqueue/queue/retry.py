"""
Retry Policy

Decides whether a failed job is delivered again and how long to wait
before the next delivery.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from jobqueue.queue.base import ProcessOptions


class BackoffStrategy(str, Enum):
    """Delay strategy between deliveries."""
    NONE = "none"                # Redeliver as soon as possible
    FIXED = "fixed"              # Same delay every time
    EXPONENTIAL = "exponential"  # base_delay * 2^(attempts-1), capped


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry budget and backoff for a consumption loop.

    A job that has been delivered `attempts` times is retried while
    attempts < max_attempts. Once the budget is spent it is dead-lettered.

    Usage:
        policy = RetryPolicy(max_attempts=5, backoff=BackoffStrategy.EXPONENTIAL)
        if policy.should_retry(job.attempts):
            delay = policy.delay_for(job.attempts)
    """
    max_attempts: int = 3
    backoff: BackoffStrategy = BackoffStrategy.NONE
    base_delay: float = 1.0
    max_delay: float = 300.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")

    def should_retry(self, attempts: int) -> bool:
        """True if a job with this many deliveries gets another one."""
        return attempts < self.max_attempts

    def delay_for(self, attempts: int) -> float:
        """Seconds to wait before the next delivery after `attempts` deliveries."""
        if self.backoff == BackoffStrategy.NONE:
            return 0.0
        if self.backoff == BackoffStrategy.FIXED:
            return min(self.base_delay, self.max_delay)

        exponent = max(attempts - 1, 0)
        return min(self.base_delay * (2 ** exponent), self.max_delay)

    @classmethod
    def from_options(
        cls,
        options: Optional[ProcessOptions],
        default_max_attempts: int,
    ) -> "RetryPolicy":
        """Build the default (no backoff) policy honoring options.max_retries."""
        max_attempts = default_max_attempts
        if options is not None and options.max_retries:
            max_attempts = options.max_retries
        return cls(max_attempts=max_attempts)
