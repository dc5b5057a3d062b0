"""
Tests for QueueWorker.
"""

import asyncio
import pytest
from unittest.mock import AsyncMock

from jobqueue.queue import InMemoryQueueProvider, Job, JobResult, ProcessOptions
from jobqueue.worker import QueueWorker, wrap_handler


class TestWrapHandler:
    """Tests for adapting plain handlers into processors."""

    async def test_return_value_becomes_success(self):
        async def handler(job: Job):
            return {"proposalId": job.data["proposalId"]}

        result = await wrap_handler(handler)(Job(name="generate", data={"proposalId": "p-1"}))

        assert result.success is True
        assert result.data == {"proposalId": "p-1"}

    async def test_exception_becomes_failure(self):
        async def handler(job: Job):
            raise ValueError("OpenAI timeout")

        result = await wrap_handler(handler)(Job(name="generate"))

        assert result.success is False
        assert result.error == "OpenAI timeout"

    async def test_exception_without_message(self):
        handler = AsyncMock(side_effect=KeyError())

        result = await wrap_handler(handler)(Job(name="generate"))

        assert result.success is False
        assert result.error == "KeyError"


class TestQueueWorker:
    """Test suite for QueueWorker."""

    @pytest.fixture
    def provider(self):
        return InMemoryQueueProvider(poll_interval=0.01, shutdown_grace_seconds=1.0)

    async def test_worker_processes_registered_queues(self, provider, eventually):
        handled = []

        async def handle(job: Job):
            handled.append((job.name, job.data["n"]))

        worker = QueueWorker(provider)
        worker.register("generate", wrap_handler(handle))
        worker.register("transcription", wrap_handler(handle))

        await provider.add("generate", {"n": 1})
        await provider.add("transcription", {"n": 2})
        await worker.start()

        try:
            assert worker.is_running

            async def both_handled():
                return sorted(handled) == [("generate", 1), ("transcription", 2)]

            await eventually(both_handled)
        finally:
            await worker.stop()

        assert not worker.is_running

    async def test_worker_retries_failing_handler(self, provider, eventually):
        attempts = []

        async def flaky(job: Job):
            attempts.append(job.attempts)
            if job.attempts == 1:
                raise RuntimeError("transient")
            return "ok"

        worker = QueueWorker(provider, options=ProcessOptions(max_retries=3))
        worker.register("generate", wrap_handler(flaky))
        await provider.add("generate", {})
        await worker.start()

        try:
            async def retried():
                stats = await provider.get_stats("generate")
                return stats.completed == 1

            await eventually(retried)
        finally:
            await worker.stop()

        assert attempts == [1, 2]

    async def test_stop_waits_for_in_flight_jobs(self, provider):
        started = asyncio.Event()
        finished = []

        async def slow(job: Job):
            started.set()
            await asyncio.sleep(0.1)
            finished.append(job.id)

        worker = QueueWorker(provider)
        worker.register("generate", wrap_handler(slow))
        job_id = await provider.add("generate", {})
        await worker.start()
        await asyncio.wait_for(started.wait(), timeout=1.0)

        await worker.stop()

        assert finished == [job_id]

    async def test_start_twice_is_noop(self, provider):
        provider.process = AsyncMock()
        provider.close = AsyncMock()

        worker = QueueWorker(provider)
        worker.register("generate", AsyncMock(return_value=JobResult.ok()))

        await worker.start()
        await worker.start()
        await worker.stop()

        assert provider.process.await_count == 1
        provider.close.assert_awaited_once()

    async def test_stop_when_not_running(self, provider):
        provider.close = AsyncMock()

        await QueueWorker(provider).stop()

        provider.close.assert_not_awaited()

    async def test_register_duplicate_queue(self, provider):
        worker = QueueWorker(provider)
        worker.register("generate", AsyncMock())

        with pytest.raises(ValueError, match="already has a processor"):
            worker.register("generate", AsyncMock())

    async def test_register_while_running(self, provider):
        provider.process = AsyncMock()
        provider.close = AsyncMock()
        worker = QueueWorker(provider)
        worker.register("generate", AsyncMock())
        await worker.start()

        try:
            with pytest.raises(RuntimeError, match="running worker"):
                worker.register("transcription", AsyncMock())
        finally:
            await worker.stop()

    async def test_per_queue_options_override_defaults(self, provider):
        provider.process = AsyncMock()
        provider.close = AsyncMock()
        defaults = ProcessOptions(concurrency=3)
        override = ProcessOptions(concurrency=1)

        worker = QueueWorker(provider, options=defaults)
        worker.register("generate", AsyncMock())
        worker.register("transcription", AsyncMock(), options=override)
        await worker.start()
        await worker.stop()

        calls = {call.args[0]: call.args[2] for call in provider.process.await_args_list}
        assert calls == {"generate": defaults, "transcription": override}
        assert worker.queues == ["generate", "transcription"]
