"""
Shopify Inventory Reconciliation Worker

Full inventory push for every active integration with auto_sync_inventory on,
honouring each integration's sync_inventory_interval_minutes. Heals anything the
event-driven sync missed (lost debounce timers, failed pushes). Also refreshes
the incoming-stock metafields and prunes old sync logs.
"""

import asyncio
import functools
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from sqlalchemy.orm import Session

from wms_sync.database import SessionLocal
from wms_sync.models import EXTERNAL_PLATFORM_SHOPIFY, Integration, IntegrationStatus, SyncTrigger
from wms_sync.services.errors import IntegrationSettingsError
from wms_sync.services.incoming_sync import calculate_incoming_inventory, sync_incoming_to_shopify
from wms_sync.services.integration_settings import load_settings
from wms_sync.services.integrations import as_utc, record_integration_error, utcnow
from wms_sync.services.inventory_sync import sync_inventory_to_shopify
from wms_sync.services.notifications import notify_sync_failure
from wms_sync.services.sync_logger import cleanup_old_sync_logs
from wms_sync.services.task_queue import side_effects

logger = logging.getLogger(__name__)

PAUSE_BETWEEN_INTEGRATIONS_SECONDS = 1.0


def _minutes_since(value: Optional[datetime], now: datetime) -> Optional[float]:
    value = as_utc(value)
    if value is None:
        return None
    return (now - value).total_seconds() / 60


async def run_scheduled_inventory_sync(
    db: Session,
    force: bool = False,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Dict[str, Any]:
    """
    Run one reconciliation pass.

    Returns:
        {"success", "processed", "results": [{integration_id, shop_domain, success, updated, failed, error}]}
    """
    integrations = (
        db.query(Integration)
        .filter(
            Integration.platform == EXTERNAL_PLATFORM_SHOPIFY,
            Integration.status == IntegrationStatus.ACTIVE.value,
        )
        .all()
    )

    results = []
    due = []
    now = utcnow()
    for integration in integrations:
        try:
            cfg = load_settings(integration)
        except IntegrationSettingsError as e:
            logger.warning("Skipping integration %s: %s", integration.id, e)
            continue
        if not cfg.auto_sync_inventory:
            continue
        minutes = _minutes_since(integration.last_inventory_sync_at, now)
        if not force and minutes is not None and minutes < cfg.sync_inventory_interval_minutes:
            results.append({
                "integration_id": integration.id,
                "shop_domain": integration.shop_domain,
                "success": True,
                "updated": 0,
                "failed": 0,
                "error": f"Skipped - last sync was {round(minutes)} minutes ago",
            })
            continue
        due.append(integration)

    for i, integration in enumerate(due):
        if i > 0:
            await sleep(PAUSE_BETWEEN_INTEGRATIONS_SECONDS)
        integration_id, shop_domain = integration.id, integration.shop_domain
        try:
            sync_result = await sync_inventory_to_shopify(db, integration_id, trigger=SyncTrigger.SCHEDULED.value)
        except Exception as e:
            logger.error("Scheduled sync failed for %s: %s", shop_domain, e)
            record_integration_error(db, integration, f"Scheduled sync failed: {e}")
            side_effects.enqueue(
                f"notify_sync_failure:{integration_id}",
                functools.partial(notify_sync_failure, integration_id, shop_domain, str(e)),
            )
            results.append({
                "integration_id": integration_id,
                "shop_domain": shop_domain,
                "success": False,
                "error": str(e),
            })
            continue

        try:
            calculate_incoming_inventory(db, integration_id)
            await sync_incoming_to_shopify(db, integration_id, trigger=SyncTrigger.SCHEDULED.value)
        except Exception as e:
            db.rollback()
            logger.error("Failed to sync incoming inventory for %s: %s", shop_domain, e)

        results.append({
            "integration_id": integration_id,
            "shop_domain": shop_domain,
            "success": True,
            "updated": sync_result.updated,
            "failed": sync_result.failed,
        })
        logger.info("Synced inventory for %s: %s updated, %s failed", shop_domain, sync_result.updated, sync_result.failed)

    return {
        "success": True,
        "processed": len(due),
        "results": results,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


async def run_inventory_reconcile_worker() -> Dict[str, Any]:
    """Scheduler entry point: cleanup, then reconciliation, on a fresh session."""
    with SessionLocal() as db:
        try:
            cleanup_old_sync_logs(db)
        except Exception as e:
            db.rollback()
            logger.error("Sync log cleanup failed: %s", e)
        result = await run_scheduled_inventory_sync(db)
    result["message"] = f"Reconciled {result['processed']} integrations"
    return result
