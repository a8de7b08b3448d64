"""
Shopify order import: turn open, unfulfilled Shopify orders into pending outbound orders.
Idempotent on (external_order_id, "shopify"); the unique index backs the check.
"""
import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from wms_sync.models import (
    EXTERNAL_PLATFORM_SHOPIFY,
    Integration,
    OutboundItem,
    OutboundOrder,
    OutboundOrderStatus,
    SyncDirection,
    SyncType,
)
from wms_sync.services.credentials import has_credentials
from wms_sync.services.errors import SyncSetupError
from wms_sync.services.integrations import get_integration, utcnow
from wms_sync.services.mappings import mappings_by_variant_and_sku
from wms_sync.services.notifications import notify_new_order
from wms_sync.services.shopify_client import ShopifyClient
from wms_sync.services.sync_logger import SyncLogEntry, log_sync_result
from wms_sync.services.task_queue import side_effects

logger = logging.getLogger(__name__)

RUSH_SHIPPING_KEYWORDS = ("express", "overnight", "priority")
DEFAULT_SHIPPING_METHOD = "Standard"


@dataclass
class OrderImportOutcome:
    status: str  # "created" | "skipped"
    order_id: Optional[str] = None
    order_number: Optional[str] = None
    unmapped_items: list[str] = field(default_factory=list)
    items_created: int = 0

    @property
    def created(self) -> bool:
        return self.status == "created"


@dataclass
class OrderSyncResult:
    imported: int = 0
    skipped: int = 0
    failed: int = 0

    def as_dict(self) -> dict:
        return {"imported": self.imported, "skipped": self.skipped, "failed": self.failed}


def build_order_number(shopify_name: str) -> str:
    """'#1001' -> 'SH-1001', '# 1003' -> 'SH-1003'."""
    return "SH-" + re.sub(r"\s", "", (shopify_name or "").replace("#", ""))


def should_import_line_item(item: dict) -> bool:
    return bool(item.get("requires_shipping")) and (item.get("fulfillable_quantity") or 0) > 0


def shipping_method_for(order: dict) -> str:
    lines = order.get("shipping_lines") or []
    if lines and (lines[0].get("title") or "").strip():
        return lines[0]["title"]
    return DEFAULT_SHIPPING_METHOD


def is_rush_order(tags: Optional[str], shipping_method: str) -> bool:
    if "rush" in (tags or "").lower():
        return True
    method = (shipping_method or "").lower()
    return any(k in method for k in RUSH_SHIPPING_KEYWORDS)


def build_order_notes(customer_note: Optional[str], unmapped_items: list[str]) -> Optional[str]:
    notes = []
    if customer_note:
        notes.append(f"Customer note: {customer_note}")
    if unmapped_items:
        notes.append(f"⚠️ {len(unmapped_items)} item(s) could not be mapped: {', '.join(unmapped_items)}")
    return "\n".join(notes) if notes else None


def ship_to_fields(order: dict) -> dict[str, Any]:
    addr = order.get("shipping_address") or None
    fields: dict[str, Any] = {"ship_to_email": order.get("email") or None}
    if not addr:
        return fields
    fields.update({
        "ship_to_name": f"{addr.get('first_name') or ''} {addr.get('last_name') or ''}".strip() or None,
        "ship_to_company": addr.get("company") or None,
        "ship_to_address": addr.get("address1") or None,
        "ship_to_address2": addr.get("address2") or None,
        "ship_to_city": addr.get("city") or None,
        "ship_to_state": addr.get("province_code") or None,
        "ship_to_postal_code": addr.get("zip") or None,
        "ship_to_country": addr.get("country_code") or None,
        "ship_to_phone": addr.get("phone") or None,
    })
    return fields


def find_existing_order(db: Session, external_order_id: str) -> Optional[OutboundOrder]:
    return (
        db.query(OutboundOrder)
        .filter(
            OutboundOrder.external_order_id == str(external_order_id),
            OutboundOrder.external_platform == EXTERNAL_PLATFORM_SHOPIFY,
        )
        .first()
    )


def _unit_price(raw: Any) -> Optional[float]:
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None


def process_shopify_order(
    db: Session,
    shopify_order: dict,
    integration: Integration,
    notify: bool = True,
) -> OrderImportOutcome:
    """
    Import one Shopify order. Already-imported orders are skipped.
    Unmapped line items are left out of the order and listed in its notes.
    """
    external_id = str(shopify_order.get("id"))
    name = shopify_order.get("name") or external_id
    order_number = build_order_number(name)

    existing = find_existing_order(db, external_id)
    if existing:
        logger.info("Order %s already exists, skipping", name)
        return OrderImportOutcome(status="skipped", order_id=existing.id, order_number=existing.order_number)

    by_variant, by_sku = mappings_by_variant_and_sku(db, integration.id)

    line_items: list[dict] = []
    unmapped: list[str] = []
    for item in shopify_order.get("line_items") or []:
        if not should_import_line_item(item):
            continue
        mapping = by_variant.get(str(item.get("variant_id")))
        sku = (item.get("sku") or "").strip()
        if mapping is None and sku:
            mapping = by_sku.get(sku.lower())
        if mapping is None:
            unmapped.append(f"{sku or 'No SKU'}: {item.get('name')}")
            continue
        line_items.append({
            "product_id": mapping.product_id,
            "qty_requested": int(item.get("fulfillable_quantity") or 0),
            "unit_price": _unit_price(item.get("price")),
        })

    if not line_items and unmapped:
        logger.warning("Order %s has no mapped products: %s", name, unmapped)

    shipping_method = shipping_method_for(shopify_order)
    rush = is_rush_order(shopify_order.get("tags"), shipping_method)
    shop_domain = integration.shop_domain or ""
    order = OutboundOrder(
        client_id=integration.client_id,
        order_number=order_number,
        source="api",
        status=OutboundOrderStatus.PENDING.value,
        external_order_id=external_id,
        external_platform=EXTERNAL_PLATFORM_SHOPIFY,
        external_order_number=name,
        integration_id=integration.id,
        shipping_method=shipping_method,
        is_rush=rush,
        notes=build_order_notes(shopify_order.get("note"), unmapped),
        requested_at=utcnow(),
        **ship_to_fields(shopify_order),
    )
    try:
        db.add(order)
        db.commit()
    except IntegrityError:
        # Another import (webhook vs. pull) won the race
        db.rollback()
        logger.info("Order %s was imported concurrently, skipping", name)
        existing = find_existing_order(db, external_id)
        return OrderImportOutcome(status="skipped", order_id=existing.id if existing else None, order_number=order_number)

    items_created = 0
    if line_items:
        try:
            db.add_all([OutboundItem(order_id=order.id, **li) for li in line_items])
            db.commit()
            items_created = len(line_items)
        except SQLAlchemyError as e:
            # The order row stays; an order without items is fixable by an operator
            db.rollback()
            logger.error("Failed to create items for order %s: %s", order.order_number, e)

    integration.last_order_sync_at = utcnow()
    db.commit()

    logger.info("Created order %s from Shopify %s (%s items, %s unmapped)", order.order_number, name, items_created, len(unmapped))

    if notify:
        side_effects.enqueue(
            f"notify_new_order:{order.order_number}",
            lambda: notify_new_order(order_number, shop_domain, items_created, unmapped, rush),
        )

    return OrderImportOutcome(
        status="created",
        order_id=order.id,
        order_number=order.order_number,
        unmapped_items=unmapped,
        items_created=items_created,
    )


async def sync_shopify_orders(
    db: Session,
    integration_id: str,
    since: Optional[datetime] = None,
    trigger: str = "manual",
    client: Optional[ShopifyClient] = None,
) -> OrderSyncResult:
    """Pull open, unfulfilled orders (optionally created after `since`) and import them."""
    started = time.monotonic()
    integration = get_integration(db, integration_id)
    if integration is None:
        raise SyncSetupError("Integration not found")
    if not has_credentials(integration):
        raise SyncSetupError("Integration not properly configured")
    client = client or ShopifyClient.for_integration(integration)

    params = {"status": "open", "fulfillment_status": "unfulfilled", "limit": 250}
    if since:
        params["created_at_min"] = since.isoformat()
    orders = await client.get_all("/orders.json", "orders", params=params)

    result = OrderSyncResult()
    for shopify_order in orders:
        try:
            if find_existing_order(db, str(shopify_order.get("id"))):
                result.skipped += 1
                continue
            outcome = process_shopify_order(db, shopify_order, integration)
            if outcome.created:
                result.imported += 1
            else:
                result.skipped += 1
        except Exception as e:
            db.rollback()
            logger.error("Failed to import order %s: %s", shopify_order.get("name"), e)
            result.failed += 1

    log_sync_result(db, SyncLogEntry(
        integration_id=integration_id,
        sync_type=SyncType.ORDERS.value,
        direction=SyncDirection.INBOUND.value,
        items_processed=result.imported,
        items_failed=result.failed,
        duration_ms=int((time.monotonic() - started) * 1000),
        triggered_by=trigger,
        metadata={"skipped": result.skipped},
    ))
    logger.info("Order sync for integration %s: %s", integration_id, result.as_dict())
    return result
