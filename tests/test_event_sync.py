"""
Event sync scheduler tests: debounce coalescing and immediate supersession
"""
import asyncio

import pytest

from wms_sync.services.errors import SyncError
from wms_sync.services.event_sync import InventorySyncScheduler
from wms_sync.services.task_queue import side_effects


class RecordingRunner:
    def __init__(self):
        self.calls = []

    async def __call__(self, integration_id, product_ids, trigger):
        self.calls.append((integration_id, product_ids, trigger))
        return {"updated": len(product_ids)}


class FailingRunner:
    def __init__(self):
        self.fail = True
        self.calls = []

    async def __call__(self, integration_id, product_ids, trigger):
        if self.fail:
            raise RuntimeError("shopify down")
        self.calls.append((integration_id, product_ids, trigger))
        return {"updated": len(product_ids)}


class ManualTimer:
    """Sleep that only returns once release() is called."""

    def __init__(self):
        self.event = asyncio.Event()

    async def __call__(self, seconds: float) -> None:
        await self.event.wait()

    def release(self):
        self.event.set()


def _resolver(mapping):
    def resolve(product_ids):
        result = {}
        for integration_id, watched in mapping.items():
            hits = [p for p in product_ids if p in watched]
            if hits:
                result[integration_id] = hits
        return result
    return resolve


class TestInventorySyncScheduler:
    """Test per-integration debounce state machine"""

    @pytest.mark.asyncio
    async def test_two_events_in_window_coalesce_into_one_sync(self):
        runner = RecordingRunner()
        timer = ManualTimer()
        scheduler = InventorySyncScheduler(runner, _resolver({"int-1": {"p1", "p2"}}), delay=5, sleep=timer)

        await scheduler.trigger(["p1"])
        await scheduler.trigger(["p2"])
        assert scheduler.pending_product_ids("int-1") == {"p1", "p2"}

        timer.release()
        await scheduler.join()

        assert runner.calls == [("int-1", ["p1", "p2"], "event")]
        assert scheduler.pending_product_ids("int-1") is None

    @pytest.mark.asyncio
    async def test_immediate_event_supersedes_pending(self):
        runner = RecordingRunner()
        timer = ManualTimer()
        scheduler = InventorySyncScheduler(runner, _resolver({"int-1": {"p1", "p2"}}), delay=5, sleep=timer)

        await scheduler.trigger(["p1"])
        await scheduler.trigger_immediate(["p2"])

        assert runner.calls == [("int-1", ["p1", "p2"], "event")]
        assert scheduler.pending_product_ids("int-1") is None

        timer.release()
        await scheduler.join()
        # the cancelled debounce timer never fires
        assert len(runner.calls) == 1

    @pytest.mark.asyncio
    async def test_integrations_are_debounced_independently(self):
        runner = RecordingRunner()
        scheduler = InventorySyncScheduler(
            runner, _resolver({"int-1": {"p1"}, "int-2": {"p1", "p2"}}), delay=0,
        )

        await scheduler.trigger(["p1", "p2"])
        await scheduler.join()

        assert sorted(runner.calls) == [
            ("int-1", ["p1"], "event"),
            ("int-2", ["p1", "p2"], "event"),
        ]

    @pytest.mark.asyncio
    async def test_unmapped_products_schedule_nothing(self):
        runner = RecordingRunner()
        scheduler = InventorySyncScheduler(runner, _resolver({"int-1": {"p1"}}), delay=0)

        await scheduler.trigger(["other"])
        await scheduler.trigger([])
        await scheduler.join()

        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_immediate_sync_failure_propagates(self):
        scheduler = InventorySyncScheduler(FailingRunner(), _resolver({"int-1": {"p1"}}), delay=0)

        with pytest.raises(RuntimeError, match="shopify down"):
            await scheduler.fire_now("int-1", ["p1"])
        with pytest.raises(SyncError, match="int-1: shopify down"):
            await scheduler.trigger_immediate(["p1"])

    @pytest.mark.asyncio
    async def test_debounced_sync_failure_is_recorded_and_retryable(self):
        runner = FailingRunner()
        scheduler = InventorySyncScheduler(runner, _resolver({"int-1": {"p1", "p2"}}), delay=0)

        await scheduler.trigger(["p1", "p2"])
        await scheduler.join()

        assert len(side_effects.failed) == 1
        failed = side_effects.failed[0]
        assert failed.job.name == "inventory_sync:int-1"
        assert failed.error == "shopify down"

        runner.fail = False
        assert side_effects.retry_failed() == 1
        await side_effects.drain()

        assert side_effects.failed == []
        assert runner.calls == [("int-1", ["p1", "p2"], "event")]

    @pytest.mark.asyncio
    async def test_cancel_all_drops_pending_timers(self):
        runner = RecordingRunner()
        timer = ManualTimer()
        scheduler = InventorySyncScheduler(runner, _resolver({"int-1": {"p1"}}), delay=5, sleep=timer)

        await scheduler.trigger(["p1"])
        scheduler.cancel_all()
        timer.release()
        await scheduler.join()

        assert runner.calls == []
