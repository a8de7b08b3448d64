"""
In-process outbox for side effects (Shopify syncs, notifications) that must never
block or fail the warehouse operation that caused them.
Failed jobs are kept, with their error, until retried.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

JobFactory = Callable[[], Awaitable[object]]


@dataclass
class SideEffectJob:
    name: str
    factory: JobFactory
    attempts: int = 0


@dataclass
class FailedJob:
    job: SideEffectJob
    error: str
    failed_at: datetime


class SideEffectQueue:
    def __init__(self, max_failed: int = 500):
        self.max_failed = max_failed
        self.failed: list[FailedJob] = []
        self.completed = 0
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def _ensure_worker(self) -> asyncio.Queue:
        loop = asyncio.get_running_loop()
        if self._loop is not loop or self._queue is None:
            # New event loop (tests, restarts): start fresh on this loop
            self._loop = loop
            self._queue = asyncio.Queue()
            self._worker = None
        if self._worker is None or self._worker.done():
            self._worker = loop.create_task(self._consume())
        return self._queue

    def _record_failure(self, job: SideEffectJob, error: str) -> None:
        self.failed.append(FailedJob(job=job, error=error, failed_at=datetime.now(timezone.utc)))
        if len(self.failed) > self.max_failed:
            dropped = self.failed.pop(0)
            logger.warning("Side-effect failure log full, dropping oldest: %s", dropped.job.name)

    def record_failure(self, name: str, factory: JobFactory, error: str) -> None:
        """Record a side effect that failed outside the queue so retry_failed() can re-run it."""
        self._record_failure(SideEffectJob(name=name, factory=factory, attempts=1), error)

    def enqueue(self, name: str, factory: JobFactory) -> bool:
        """Queue a job. Never raises; returns False if the job could not be queued."""
        job = SideEffectJob(name=name, factory=factory)
        try:
            queue = self._ensure_worker()
        except RuntimeError:
            logger.warning("No running event loop, side effect %s recorded as failed", name)
            self._record_failure(job, "no running event loop")
            return False
        queue.put_nowait(job)
        return True

    async def _consume(self) -> None:
        queue = self._queue
        while True:
            job = await queue.get()
            job.attempts += 1
            try:
                await job.factory()
                self.completed += 1
            except Exception as e:
                logger.error("Side effect %s failed (attempt %s): %s", job.name, job.attempts, e)
                self._record_failure(job, str(e))
            finally:
                queue.task_done()

    def retry_failed(self) -> int:
        """Re-enqueue every failed job. Returns how many were queued."""
        pending, self.failed = self.failed, []
        queued = 0
        for failed in pending:
            try:
                queue = self._ensure_worker()
            except RuntimeError:
                self.failed.append(failed)
                continue
            queue.put_nowait(failed.job)
            queued += 1
        if queued:
            logger.info("Retrying %s failed side effects", queued)
        return queued

    async def drain(self) -> None:
        """Wait until every queued job has run."""
        if self._queue is not None and self._loop is asyncio.get_running_loop():
            await self._queue.join()

    def status(self) -> dict:
        return {
            "queued": self._queue.qsize() if self._queue is not None else 0,
            "completed": self.completed,
            "failed": [
                {"name": f.job.name, "error": f.error, "attempts": f.job.attempts, "failed_at": f.failed_at.isoformat()}
                for f in self.failed
            ],
        }


# Global queue instance
side_effects = SideEffectQueue()
