"""Tests for the durable job queue."""

import asyncio

import pytest

from aimm.services.queue import JobQueue, QueueTask, QueueTaskStatus


class TestQueueTask:
    """Tests for retry delay computation."""

    def test_exponential_backoff(self):
        """Test the retry delay doubling."""
        task = QueueTask(name="download", payload={}, attempts=5, backoff=10.0)

        delays = []
        for made in range(1, 5):
            task.attempts_made = made
            delays.append(task.retry_delay())

        assert delays == [10.0, 20.0, 40.0, 80.0]


class TestJobQueue:
    """Tests for dispatching, retry and persistence."""

    @pytest.mark.asyncio
    async def test_dispatches_to_handler(self):
        """Test dispatching tasks to their handler."""
        queue = JobQueue(max_concurrent=2)
        received = []

        async def handler(payload):
            received.append(payload)

        queue.register("generate", handler)
        await queue.start()
        try:
            await queue.add("generate", {"job_id": "j1"})
            await queue.add("generate", {"job_id": "j2"})
            await queue.wait_idle()
        finally:
            await queue.stop()

        assert sorted(p["job_id"] for p in received) == ["j1", "j2"]
        assert queue.get_stats()["processed"] == 2

    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        """Test retrying a failing task."""
        queue = JobQueue(max_concurrent=1)
        calls = []

        async def flaky(payload):
            calls.append(payload)
            if len(calls) < 3:
                raise RuntimeError("temporary")

        queue.register("download", flaky)
        await queue.start()
        try:
            await queue.add("download", {"variant_id": "v1"}, attempts=5, backoff=0)
            await queue.wait_idle()
        finally:
            await queue.stop()

        stats = queue.get_stats()
        assert len(calls) == 3
        assert stats["processed"] == 1
        assert stats["retried"] == 2
        assert stats["failed"] == 0

    @pytest.mark.asyncio
    async def test_exhausted_task_kept_as_failed(self, tmp_path):
        """Test that an exhausted task stays on disk as failed."""
        queue = JobQueue(max_concurrent=1, queue_dir=tmp_path)
        calls = []

        async def always_fails(payload):
            calls.append(payload)
            raise RuntimeError("permanent")

        queue.register("generate", always_fails)
        await queue.start()
        try:
            task_id = await queue.add("generate", {"job_id": "j1"}, attempts=3, backoff=0)
            await queue.wait_idle()
        finally:
            await queue.stop()

        assert len(calls) == 3
        assert queue.get_stats()["failed"] == 1
        saved = QueueTask.model_validate_json((tmp_path / f"{task_id}.json").read_text())
        assert saved.status == QueueTaskStatus.FAILED
        assert saved.attempts_made == 3
        assert saved.last_error == "permanent"

    @pytest.mark.asyncio
    async def test_unknown_task_fails_without_retry(self):
        """Test a task with no registered handler."""
        queue = JobQueue(max_concurrent=1)
        await queue.start()
        try:
            await queue.add("nope", {}, attempts=5)
            await queue.wait_idle()
        finally:
            await queue.stop()

        stats = queue.get_stats()
        assert stats["failed"] == 1
        assert stats["retried"] == 0

    @pytest.mark.asyncio
    async def test_succeeded_task_removed_from_disk(self, tmp_path):
        """Test removing a finished task from disk."""
        queue = JobQueue(max_concurrent=1, queue_dir=tmp_path)

        async def handler(payload):
            return None

        queue.register("generate", handler)
        await queue.start()
        try:
            await queue.add("generate", {"job_id": "j1"})
            await queue.wait_idle()
        finally:
            await queue.stop()

        assert list(tmp_path.glob("*.json")) == []

    @pytest.mark.asyncio
    async def test_pending_tasks_restored_on_start(self, tmp_path):
        """Test restoring persisted tasks on start."""
        first = JobQueue(max_concurrent=1, queue_dir=tmp_path)
        # Not started: the task stays persisted as pending
        await first.add("generate", {"job_id": "j1"})

        received = []

        async def handler(payload):
            received.append(payload)

        second = JobQueue(max_concurrent=1, queue_dir=tmp_path)
        second.register("generate", handler)
        await second.start()
        try:
            await second.wait_idle()
        finally:
            await second.stop()

        assert received == [{"job_id": "j1"}]

    @pytest.mark.asyncio
    async def test_higher_priority_first(self):
        """Test priority ordering."""
        queue = JobQueue(max_concurrent=1)
        order = []

        async def handler(payload):
            order.append(payload["n"])

        queue.register("generate", handler)
        await queue.add("generate", {"n": 1}, priority=0)
        await queue.add("generate", {"n": 2}, priority=5)
        await queue.add("generate", {"n": 3}, priority=0)
        await queue.start()
        try:
            await queue.wait_idle()
        finally:
            await queue.stop()

        assert order == [2, 1, 3]

    @pytest.mark.asyncio
    async def test_stop_cancels_delayed_retries(self):
        """Test that stop cancels scheduled retries."""
        queue = JobQueue(max_concurrent=1)

        async def fails(payload):
            raise RuntimeError("later")

        queue.register("download", fails)
        await queue.start()
        await queue.add("download", {}, attempts=3, backoff=60)
        for _ in range(100):
            if queue.get_stats()["delayed"]:
                break
            await asyncio.sleep(0.01)

        await queue.stop()

        assert queue.get_stats()["delayed"] == 0
        assert not queue.is_running
