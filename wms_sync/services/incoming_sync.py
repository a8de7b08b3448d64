"""
Incoming-stock projection: open inbound quantities per mapped product,
published to Shopify as a product metafield.
"""
import asyncio
import logging
import time
from collections import defaultdict
from typing import Awaitable, Callable, Optional

from sqlalchemy.orm import Session

from wms_sync.config import settings
from wms_sync.models import (
    OPEN_INBOUND_STATUSES,
    InboundItem,
    InboundOrder,
    ProductMapping,
    SyncDirection,
    SyncType,
)
from wms_sync.services.integrations import get_integration, utcnow
from wms_sync.services.shopify_client import ShopifyClient
from wms_sync.services.sync_logger import SyncLogEntry, log_sync_result

logger = logging.getLogger(__name__)

INCOMING_METAFIELD_KEY = "incoming_qty"


def calculate_incoming_inventory(db: Session, integration_id: str) -> dict:
    """Write incoming_qty = sum(max(0, expected - received)) over open inbound orders."""
    mappings = (
        db.query(ProductMapping)
        .filter(ProductMapping.integration_id == integration_id, ProductMapping.sync_inventory.is_(True))
        .all()
    )
    if not mappings:
        return {"updated": 0}

    product_ids = list({m.product_id for m in mappings})
    rows = (
        db.query(InboundItem.product_id, InboundItem.qty_expected, InboundItem.qty_received)
        .join(InboundOrder, InboundOrder.id == InboundItem.inbound_order_id)
        .filter(InboundItem.product_id.in_(product_ids), InboundOrder.status.in_(OPEN_INBOUND_STATUSES))
        .all()
    )
    incoming: dict[str, int] = defaultdict(int)
    for product_id, expected, received in rows:
        incoming[product_id] += max(0, (expected or 0) - (received or 0))

    now = utcnow()
    for m in mappings:
        m.incoming_qty = incoming.get(m.product_id, 0)
        m.incoming_updated_at = now
    db.commit()
    logger.info("Calculated incoming inventory for %s mappings on integration %s", len(mappings), integration_id)
    return {"updated": len(mappings)}


async def sync_incoming_to_shopify(
    db: Session,
    integration_id: str,
    trigger: str = "scheduled",
    client: Optional[ShopifyClient] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> dict:
    """POST an incoming_qty metafield for each mapping with incoming stock. Per-item failures are counted."""
    started = time.monotonic()
    integration = get_integration(db, integration_id)
    mappings = (
        db.query(ProductMapping)
        .filter(
            ProductMapping.integration_id == integration_id,
            ProductMapping.incoming_qty > 0,
            ProductMapping.external_product_id.isnot(None),
        )
        .all()
    )
    if not mappings:
        return {"updated": 0, "failed": 0}

    client = client or ShopifyClient.for_integration(integration)
    updated, failed, errors = 0, 0, []
    for i, m in enumerate(mappings):
        if i > 0 and settings.METAFIELD_SYNC_DELAY_SECONDS:
            await sleep(settings.METAFIELD_SYNC_DELAY_SECONDS)
        try:
            await client.post(
                f"/products/{m.external_product_id}/metafields.json",
                {
                    "metafield": {
                        "namespace": settings.SHOPIFY_METAFIELD_NAMESPACE,
                        "key": INCOMING_METAFIELD_KEY,
                        "value": str(m.incoming_qty),
                        "type": "number_integer",
                    }
                },
            )
            updated += 1
        except Exception as e:
            failed += 1
            errors.append({"productId": m.product_id, "error": str(e)})
            logger.warning("Incoming metafield sync failed for product %s: %s", m.external_product_id, e)

    log_sync_result(db, SyncLogEntry(
        integration_id=integration_id,
        sync_type=SyncType.INCOMING.value,
        direction=SyncDirection.OUTBOUND.value,
        items_processed=updated,
        items_failed=failed,
        error_details=errors,
        duration_ms=int((time.monotonic() - started) * 1000),
        triggered_by=trigger,
    ))
    return {"updated": updated, "failed": failed}
