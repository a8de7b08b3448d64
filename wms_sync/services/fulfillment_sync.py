"""
Push shipment tracking back to Shopify as a fulfillment on the order's open fulfillment order.
Failures are persisted onto the integration and re-raised to the caller.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.orm import Session

from wms_sync.models import EXTERNAL_PLATFORM_SHOPIFY, OutboundOrder, SyncDirection, SyncTrigger, SyncType
from wms_sync.services.credentials import has_credentials
from wms_sync.services.errors import IntegrationSettingsError
from wms_sync.services.integration_settings import load_settings
from wms_sync.services.integrations import get_integration, record_integration_error, utcnow
from wms_sync.services.mappings import variant_ids_by_product
from wms_sync.services.shopify_client import ShopifyClient
from wms_sync.services.sync_logger import SyncLogEntry, log_sync_result

logger = logging.getLogger(__name__)

OPEN_FULFILLMENT_ORDER_STATUSES = ("open", "in_progress")

CARRIER_ALIASES = {
    "ups": "UPS",
    "usps": "USPS",
    "fedex": "FedEx",
    "fed ex": "FedEx",
    "dhl": "DHL Express",
    "dhl express": "DHL Express",
    "ontrac": "OnTrac",
    "lasership": "LaserShip",
    "canada post": "Canada Post",
    "purolator": "Purolator",
}


def map_carrier_to_shopify(carrier: Optional[str]) -> Optional[str]:
    """Canonical Shopify carrier name; unknown carriers pass through unchanged."""
    if not carrier:
        return carrier
    return CARRIER_ALIASES.get(carrier.strip().lower(), carrier)


@dataclass
class FulfillmentSyncResult:
    synced: bool = False
    skipped_reason: Optional[str] = None
    fulfillment_id: Optional[str] = None
    line_items: list[dict] = field(default_factory=list)


def _skip(reason: str, order_id: str) -> FulfillmentSyncResult:
    logger.info("Skipping fulfillment sync for order %s: %s", order_id, reason)
    return FulfillmentSyncResult(skipped_reason=reason)


def partial_fulfillment_lines(
    fulfillment_order: dict,
    requested: dict[str, int],
) -> list[dict]:
    """
    Match requested {variant_id: qty} against the fulfillment order's line items.
    Each line gets min(remaining requested, fulfillable_quantity); never more than Shopify allows.
    """
    remaining = dict(requested)
    lines = []
    for li in fulfillment_order.get("line_items") or []:
        variant_id = str(li.get("variant_id"))
        want = remaining.get(variant_id, 0)
        if want <= 0:
            continue
        qty = min(want, int(li.get("fulfillable_quantity") or 0))
        if qty <= 0:
            continue
        lines.append({"id": li["id"], "quantity": qty})
        remaining[variant_id] = want - qty
    return lines


async def sync_fulfillment_to_shopify(
    db: Session,
    order_id: str,
    tracking_number: str,
    carrier: str,
    tracking_url: Optional[str] = None,
    items: Optional[list[dict]] = None,
    client: Optional[ShopifyClient] = None,
) -> FulfillmentSyncResult:
    """
    Create a Shopify fulfillment for an imported order.
    `items` ([{product_id, quantity}]) limits it to a partial fulfillment.
    """
    started = time.monotonic()
    order = db.query(OutboundOrder).filter(OutboundOrder.id == order_id).first()
    if order is None:
        return _skip("order not found", order_id)
    if not order.external_order_id or order.external_platform != EXTERNAL_PLATFORM_SHOPIFY:
        return _skip("order is not from Shopify", order_id)
    integration = get_integration(db, order.integration_id) if order.integration_id else None
    if not has_credentials(integration):
        return _skip("integration not found or not configured", order_id)

    try:
        notify_customer = load_settings(integration).fulfillment_notify_customer
    except IntegrationSettingsError as e:
        logger.warning("Using default notify_customer for integration %s: %s", integration.id, e)
        notify_customer = True

    try:
        client = client or ShopifyClient.for_integration(integration)
        data = await client.get(f"/orders/{order.external_order_id}/fulfillment_orders.json")
        open_fo = next(
            (fo for fo in data.get("fulfillment_orders") or [] if fo.get("status") in OPEN_FULFILLMENT_ORDER_STATUSES),
            None,
        )
        if open_fo is None:
            return _skip("no open fulfillment order in Shopify", order_id)

        fo_entry: dict = {"fulfillment_order_id": open_fo["id"]}
        lines: list[dict] = []
        if items:
            variants = variant_ids_by_product(db, integration.id, [i["product_id"] for i in items])
            requested: dict[str, int] = {}
            for item in items:
                variant_id = variants.get(item["product_id"])
                if not variant_id:
                    logger.warning("No Shopify variant mapped for product %s, not fulfilling it", item["product_id"])
                    continue
                requested[variant_id] = requested.get(variant_id, 0) + int(item.get("quantity") or 0)
            lines = partial_fulfillment_lines(open_fo, requested)
            if not lines:
                return _skip("no fulfillable lines match the shipped items", order_id)
            fo_entry["fulfillment_order_line_items"] = lines

        tracking_info = {"number": tracking_number, "company": map_carrier_to_shopify(carrier)}
        if tracking_url:
            tracking_info["url"] = tracking_url

        created = await client.post("/fulfillments.json", {
            "fulfillment": {
                "line_items_by_fulfillment_order": [fo_entry],
                "tracking_info": tracking_info,
                "notify_customer": notify_customer,
            }
        })
    except Exception as e:
        logger.error("Failed to sync fulfillment to Shopify for order %s: %s", order.order_number, e)
        record_integration_error(db, integration, str(e) or "Fulfillment sync failed")
        log_sync_result(db, SyncLogEntry(
            integration_id=integration.id,
            sync_type=SyncType.ORDERS.value,
            direction=SyncDirection.OUTBOUND.value,
            items_processed=0,
            items_failed=1,
            error_details=[{"orderId": order_id, "error": str(e)}],
            duration_ms=int((time.monotonic() - started) * 1000),
            triggered_by=SyncTrigger.EVENT.value,
            metadata={"action": "fulfillment", "shopifyOrderId": order.external_order_id},
        ))
        raise

    integration.last_order_sync_at = utcnow()
    db.commit()
    fulfillment_id = (created.get("fulfillment") or {}).get("id")
    log_sync_result(db, SyncLogEntry(
        integration_id=integration.id,
        sync_type=SyncType.ORDERS.value,
        direction=SyncDirection.OUTBOUND.value,
        items_processed=1,
        items_failed=0,
        duration_ms=int((time.monotonic() - started) * 1000),
        triggered_by=SyncTrigger.EVENT.value,
        metadata={
            "action": "fulfillment",
            "shopifyOrderId": order.external_order_id,
            "fulfillmentId": fulfillment_id,
            "partial": bool(items),
        },
    ))
    logger.info("Synced fulfillment to Shopify for order %s", order.order_number)
    return FulfillmentSyncResult(
        synced=True,
        fulfillment_id=str(fulfillment_id) if fulfillment_id is not None else None,
        line_items=lines,
    )
