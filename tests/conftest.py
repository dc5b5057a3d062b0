import os

os.environ.setdefault("QUEUE_PROVIDER", "memory")
os.environ.setdefault("ENVIRONMENT", "test")

import asyncio
import pytest

from jobqueue.config import get_settings
from jobqueue.queue import InMemoryQueueProvider
from jobqueue.utils.metrics import metrics


@pytest.fixture(autouse=True)
def clean_state():
    """Fresh settings cache and metric values for every test."""
    get_settings.cache_clear()
    metrics.reset()
    yield
    get_settings.cache_clear()


@pytest.fixture
async def memory_provider():
    """In-memory provider with fast polling and a short shutdown grace."""
    provider = InMemoryQueueProvider(
        concurrency=3,
        max_retries=3,
        poll_interval=0.01,
        shutdown_grace_seconds=1.0,
    )
    yield provider
    await provider.close()


@pytest.fixture
def eventually():
    """Poll an async predicate until it holds or the timeout expires."""
    async def _eventually(predicate, timeout: float = 2.0, interval: float = 0.01):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            if await predicate():
                return
            if loop.time() >= deadline:
                raise AssertionError("Condition not met before timeout")
            await asyncio.sleep(interval)

    return _eventually
