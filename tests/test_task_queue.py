"""
Side-effect queue tests: failures are recorded and retryable, never raised
"""
import pytest

from wms_sync.services.task_queue import SideEffectQueue


class TestSideEffectQueue:
    @pytest.mark.asyncio
    async def test_runs_jobs_in_order(self):
        queue = SideEffectQueue()
        ran = []

        async def job(n):
            ran.append(n)

        for n in range(3):
            queue.enqueue(f"job-{n}", lambda n=n: job(n))
        await queue.drain()

        assert ran == [0, 1, 2]
        assert queue.completed == 3
        assert queue.failed == []

    @pytest.mark.asyncio
    async def test_failed_job_is_recorded_then_retried(self):
        queue = SideEffectQueue()
        attempts = []

        async def flaky():
            attempts.append(1)
            if len(attempts) == 1:
                raise RuntimeError("shopify down")

        assert queue.enqueue("flaky", flaky) is True
        await queue.drain()

        assert len(queue.failed) == 1
        assert queue.failed[0].error == "shopify down"
        assert queue.status()["failed"][0]["name"] == "flaky"

        assert queue.retry_failed() == 1
        await queue.drain()

        assert queue.failed == []
        assert len(attempts) == 2
        assert queue.completed == 1

    def test_enqueue_without_event_loop_never_raises(self):
        queue = SideEffectQueue()

        async def job():
            return None

        assert queue.enqueue("orphan", job) is False
        assert queue.failed[0].error == "no running event loop"

    @pytest.mark.asyncio
    async def test_failure_log_is_bounded(self):
        queue = SideEffectQueue(max_failed=2)

        async def boom():
            raise ValueError("no")

        for n in range(3):
            queue.enqueue(f"boom-{n}", boom)
        await queue.drain()

        assert [f.job.name for f in queue.failed] == ["boom-1", "boom-2"]
