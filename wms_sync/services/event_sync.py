"""
Event-driven inventory sync.

Warehouse stock changes call trigger_inventory_sync (debounced per integration) or
trigger_immediate_inventory_sync (shipments, where a stale Shopify view risks overselling).

Debounce state is per process and best effort: a lost timer is healed by the next
event or by the scheduled reconciliation.
"""
import asyncio
import functools
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable, Optional

from wms_sync.config import settings
from wms_sync.database import SessionLocal
from wms_sync.models import SyncTrigger
from wms_sync.services.errors import SyncError
from wms_sync.services.mappings import integrations_for_products
from wms_sync.services.task_queue import side_effects

logger = logging.getLogger(__name__)

SyncRunner = Callable[[str, list[str], str], Awaitable[object]]
Resolver = Callable[[list[str]], dict[str, list[str]]]


async def run_inventory_sync(integration_id: str, product_ids: list[str], trigger: str) -> object:
    """Default runner: one session per sync run."""
    from wms_sync.services.inventory_sync import sync_inventory_to_shopify

    with SessionLocal() as db:
        return await sync_inventory_to_shopify(db, integration_id, product_ids, trigger=trigger)


def resolve_affected_integrations(product_ids: list[str]) -> dict[str, list[str]]:
    with SessionLocal() as db:
        return integrations_for_products(db, product_ids)


@dataclass
class _PendingSync:
    product_ids: set[str] = field(default_factory=set)
    task: Optional[asyncio.Task] = None


class InventorySyncScheduler:
    """
    Coalesces inventory events per integration.

    schedule(): cancel the pending timer, union product ids, re-arm `delay` seconds.
    fire_now(): cancel the pending timer and sync pending + new ids right away.
    """

    def __init__(
        self,
        sync_runner: SyncRunner = run_inventory_sync,
        resolver: Resolver = resolve_affected_integrations,
        delay: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._sync_runner = sync_runner
        self._resolver = resolver
        self.delay = settings.INVENTORY_DEBOUNCE_SECONDS if delay is None else delay
        self._sleep = sleep
        self._pending: dict[str, _PendingSync] = {}
        self._tasks: set[asyncio.Task] = set()

    def pending_product_ids(self, integration_id: str) -> Optional[set[str]]:
        entry = self._pending.get(integration_id)
        return set(entry.product_ids) if entry else None

    def _take_pending(self, integration_id: str) -> set[str]:
        entry = self._pending.pop(integration_id, None)
        if entry is None:
            return set()
        if entry.task is not None and not entry.task.done():
            entry.task.cancel()
        return entry.product_ids

    def schedule(self, integration_id: str, product_ids: Iterable[str]) -> None:
        merged = self._take_pending(integration_id) | set(product_ids)
        entry = _PendingSync(product_ids=merged)
        entry.task = asyncio.get_running_loop().create_task(self._fire_later(integration_id, entry))
        self._tasks.add(entry.task)
        entry.task.add_done_callback(self._tasks.discard)
        self._pending[integration_id] = entry
        logger.debug("Debounced inventory sync for %s: %s products pending", integration_id, len(merged))

    async def _fire_later(self, integration_id: str, entry: _PendingSync) -> None:
        await self._sleep(self.delay)
        if self._pending.get(integration_id) is entry:
            del self._pending[integration_id]
        ids = sorted(entry.product_ids)
        try:
            await self._run(integration_id, ids)
        except Exception as e:
            logger.error("Debounced inventory sync failed for integration %s: %s", integration_id, e)
            # Timer-fired syncs are not outbox jobs; record one so retry_failed() re-runs it
            side_effects.record_failure(
                f"inventory_sync:{integration_id}",
                functools.partial(self.fire_now, integration_id, ids),
                str(e),
            )

    async def fire_now(self, integration_id: str, product_ids: Iterable[str]) -> object:
        """Sync now. Failures propagate to the caller."""
        merged = self._take_pending(integration_id) | set(product_ids)
        return await self._run(integration_id, sorted(merged))

    async def _run(self, integration_id: str, product_ids: list[str]) -> object:
        return await self._sync_runner(integration_id, product_ids, SyncTrigger.EVENT.value)

    async def trigger(self, product_ids: Iterable[str]) -> None:
        ids = list(set(product_ids))
        if not ids:
            return
        for integration_id, affected in self._resolver(ids).items():
            self.schedule(integration_id, affected)

    async def trigger_immediate(self, product_ids: Iterable[str]) -> None:
        ids = list(set(product_ids))
        if not ids:
            return
        errors = []
        for integration_id, affected in self._resolver(ids).items():
            try:
                await self.fire_now(integration_id, affected)
            except Exception as e:
                logger.error("Immediate inventory sync failed for integration %s: %s", integration_id, e)
                errors.append(f"{integration_id}: {e}")
        if errors:
            raise SyncError("Immediate inventory sync failed for " + "; ".join(errors))

    async def join(self) -> None:
        """Wait for armed timers and their syncs to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel_all(self) -> None:
        for integration_id in list(self._pending):
            self._take_pending(integration_id)


_scheduler: Optional[InventorySyncScheduler] = None


def get_scheduler() -> InventorySyncScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = InventorySyncScheduler()
    return _scheduler


async def trigger_inventory_sync(product_ids: Iterable[str]) -> None:
    await get_scheduler().trigger(product_ids)


async def trigger_immediate_inventory_sync(product_ids: Iterable[str]) -> None:
    await get_scheduler().trigger_immediate(product_ids)
