"""
Returns sync: refund received return items on the original Shopify order.
Amounts always come from Shopify's refunds/calculate endpoint; nothing is recomputed here.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.orm import Session

from wms_sync.models import EXTERNAL_PLATFORM_SHOPIFY, Return, ReturnDisposition, SyncDirection, SyncTrigger, SyncType
from wms_sync.services.credentials import has_credentials
from wms_sync.services.integrations import get_integration, record_integration_error
from wms_sync.services.mappings import variant_ids_by_product
from wms_sync.services.shopify_client import ShopifyClient
from wms_sync.services.sync_logger import SyncLogEntry, log_sync_result

logger = logging.getLogger(__name__)


@dataclass
class ReturnSyncResult:
    synced: bool = False
    skipped_reason: Optional[str] = None
    refund_id: Optional[str] = None
    refund_line_items: list[dict] = field(default_factory=list)


def restock_type_for(disposition: Optional[str]) -> str:
    return "return" if disposition == ReturnDisposition.RESTOCK.value else "no_restock"


def build_refund_line_items(return_items: list, variant_map: dict[str, str], shopify_line_items: list[dict]) -> list[dict]:
    """
    Only items with a mapped variant, a live Shopify line item and qty_received > 0.
    Items on the same Shopify line are merged into one entry capped at the line's quantity;
    a merged line is restocked only when every part of it was.
    """
    by_variant = {str(li.get("variant_id")): li for li in shopify_line_items}
    merged: dict[str, dict] = {}
    caps: dict[str, int] = {}
    for item in return_items:
        variant_id = variant_map.get(item.product_id)
        if not variant_id:
            continue
        line_item = by_variant.get(str(variant_id))
        if not line_item:
            continue
        if (item.qty_received or 0) <= 0:
            continue
        restock_type = restock_type_for(item.disposition)
        key = str(line_item["id"])
        entry = merged.get(key)
        if entry is None:
            merged[key] = {"line_item_id": line_item["id"], "quantity": item.qty_received, "restock_type": restock_type}
            if line_item.get("quantity") is not None:
                caps[key] = int(line_item["quantity"])
            continue
        entry["quantity"] += item.qty_received
        if restock_type != entry["restock_type"]:
            entry["restock_type"] = "no_restock"

    for key, cap in caps.items():
        merged[key]["quantity"] = min(merged[key]["quantity"], cap)
    return [entry for entry in merged.values() if entry["quantity"] > 0]


def _skip(reason: str, return_id: str) -> ReturnSyncResult:
    logger.info("Skipping return sync for %s: %s", return_id, reason)
    return ReturnSyncResult(skipped_reason=reason)


def build_refund_payload(calculated: dict, requested_lines: list[dict]) -> dict:
    """Create-refund body from the calculated refund. Suggested transactions become refunds."""
    transactions = []
    for tx in calculated.get("transactions") or []:
        tx = dict(tx)
        tx["kind"] = "refund"
        transactions.append(tx)
    refund = {
        "notify": True,
        "refund_line_items": calculated.get("refund_line_items") or requested_lines,
        "transactions": transactions,
    }
    if calculated.get("shipping"):
        refund["shipping"] = calculated["shipping"]
    if calculated.get("currency"):
        refund["currency"] = calculated["currency"]
    return {"refund": refund}


async def sync_return_to_shopify(
    db: Session,
    return_id: str,
    client: Optional[ShopifyClient] = None,
) -> ReturnSyncResult:
    started = time.monotonic()
    record = db.query(Return).filter(Return.id == return_id).first()
    if record is None:
        return _skip("return not found", return_id)
    if not record.original_order_id or record.original_order is None:
        return _skip("return has no linked order", return_id)
    order = record.original_order
    if not order.external_order_id or order.external_platform != EXTERNAL_PLATFORM_SHOPIFY:
        return _skip("not a Shopify order", return_id)
    if not order.integration_id:
        return _skip("no integration on order", return_id)
    integration = get_integration(db, order.integration_id)
    if not has_credentials(integration):
        return _skip("integration not configured", return_id)

    variant_map = variant_ids_by_product(db, integration.id, [i.product_id for i in record.items])
    if not variant_map:
        return _skip("no product mappings for return items", return_id)

    external_order_id = order.external_order_id
    try:
        client = client or ShopifyClient.for_integration(integration)
        data = await client.get(f"/orders/{external_order_id}.json")
        shopify_order = data.get("order") or {}
        lines = build_refund_line_items(record.items, variant_map, shopify_order.get("line_items") or [])
        if not lines:
            return _skip("no refundable items", return_id)

        calculated = await client.post(
            f"/orders/{external_order_id}/refunds/calculate.json",
            {"refund": {"shipping": {"full_refund": False}, "refund_line_items": lines}},
        )
        created = await client.post(
            f"/orders/{external_order_id}/refunds.json",
            build_refund_payload(calculated.get("refund") or {}, lines),
        )
    except Exception as e:
        logger.error("Failed to sync return %s to Shopify: %s", return_id, e)
        record_integration_error(db, integration, str(e) or "Return sync failed")
        log_sync_result(db, SyncLogEntry(
            integration_id=integration.id,
            sync_type=SyncType.RETURN.value,
            direction=SyncDirection.OUTBOUND.value,
            items_processed=0,
            items_failed=1,
            error_details=[{"error": str(e) or "Return sync failed"}],
            duration_ms=int((time.monotonic() - started) * 1000),
            triggered_by=SyncTrigger.EVENT.value,
            metadata={"returnId": return_id},
        ))
        raise

    refund_id = (created.get("refund") or {}).get("id")
    log_sync_result(db, SyncLogEntry(
        integration_id=integration.id,
        sync_type=SyncType.RETURN.value,
        direction=SyncDirection.OUTBOUND.value,
        items_processed=len(lines),
        items_failed=0,
        duration_ms=int((time.monotonic() - started) * 1000),
        triggered_by=SyncTrigger.EVENT.value,
        metadata={"returnId": return_id, "shopifyOrderId": external_order_id, "refundId": refund_id},
    ))
    logger.info("Synced return %s as refund to Shopify order %s", return_id, external_order_id)
    return ReturnSyncResult(
        synced=True,
        refund_id=str(refund_id) if refund_id is not None else None,
        refund_line_items=lines,
    )
