"""
Shopify webhook: HMAC verification, de-duplication and dispatch by topic.
"""
import base64
import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from wms_sync.models import Integration, OutboundItem, OutboundOrderStatus, WebhookEvent
from wms_sync.services.errors import IntegrationSettingsError
from wms_sync.services.integration_settings import load_settings
from wms_sync.services.integrations import utcnow
from wms_sync.services.inventory import enqueue_inventory_sync, release_reservation
from wms_sync.services.order_import import find_existing_order, process_shopify_order, ship_to_fields

logger = logging.getLogger(__name__)

UPDATABLE_STATUSES = (OutboundOrderStatus.PENDING.value,)
CANCELLABLE_STATUSES = (
    OutboundOrderStatus.PENDING.value,
    OutboundOrderStatus.PICKING.value,
    OutboundOrderStatus.PACKED.value,
)


def verify_webhook_hmac(body: bytes, hmac_header: Optional[str], secret: Optional[str]) -> bool:
    """
    Verify X-Shopify-Hmac-Sha256: HMAC-SHA256(raw_body, secret) base64 == header.
    """
    if not secret or not hmac_header or not body:
        return False
    computed = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    computed_b64 = base64.b64encode(computed).decode("utf-8")
    return hmac.compare_digest(computed_b64, hmac_header.strip())


def build_event_id(shop_domain: Optional[str], topic: Optional[str], payload: dict) -> str:
    return f"{shop_domain}-{topic}-{payload.get('id') or int(time.time() * 1000)}"


@dataclass
class WebhookResult:
    event_id: str
    status: str  # processed | duplicate | failed | ignored
    error: Optional[str] = None


def handle_order_create(db: Session, payload: dict, integration: Integration) -> None:
    if payload.get("fulfillment_status") == "fulfilled":
        logger.info("Order %s already fulfilled, skipping", payload.get("name"))
        return
    process_shopify_order(db, payload, integration)


def handle_order_updated(db: Session, payload: dict, integration: Integration) -> None:
    order = find_existing_order(db, str(payload.get("id")))
    if order is None:
        logger.info("Order %s not found, may need to import", payload.get("id"))
        return
    if order.status not in UPDATABLE_STATUSES:
        logger.info("Order %s already %s, not updating from Shopify", order.id, order.status)
        return
    if not payload.get("shipping_address"):
        return
    for key, value in ship_to_fields(payload).items():
        if key != "ship_to_email":
            setattr(order, key, value)
    db.commit()
    logger.info("Updated shipping address for order %s", order.id)


def handle_order_cancelled(db: Session, payload: dict, integration: Integration) -> None:
    order = find_existing_order(db, str(payload.get("id")))
    if order is None:
        logger.info("Cancelled order %s not found", payload.get("id"))
        return
    if order.status not in CANCELLABLE_STATUSES:
        logger.info("Order %s already %s, cannot cancel", order.id, order.status)
        return

    order.status = OutboundOrderStatus.CANCELLED.value
    order.notes = f"{order.notes or ''}\n[Auto-cancelled from Shopify at {utcnow().isoformat()}]".strip()
    db.commit()
    logger.info("Cancelled order %s from Shopify webhook", order.id)

    try:
        location_id = load_settings(integration).default_location_id
    except IntegrationSettingsError as e:
        logger.warning("Not releasing reservations for order %s: %s", order.id, e)
        return
    if not location_id:
        return
    items = db.query(OutboundItem).filter(OutboundItem.order_id == order.id).all()
    released = []
    for item in items:
        qty = (item.qty_requested or 0) - (item.qty_shipped or 0)
        if qty > 0:
            release_reservation(db, item.product_id, location_id, qty)
            released.append(item.product_id)
    db.commit()
    if released:
        logger.info("Released reservations for cancelled order %s", order.id)
        enqueue_inventory_sync(released)


TOPIC_HANDLERS = {
    "orders/create": handle_order_create,
    "orders/updated": handle_order_updated,
    "orders/cancelled": handle_order_cancelled,
}


def process_shopify_webhook(
    db: Session,
    integration: Integration,
    topic: Optional[str],
    shop_domain: Optional[str],
    payload: dict,
) -> WebhookResult:
    """
    Record the event (deduplicated by shop/topic/payload id) and dispatch it.
    Handler failures are stored on the event; they never propagate to Shopify.
    """
    event_id = build_event_id(shop_domain, topic, payload)
    if db.query(WebhookEvent).filter(WebhookEvent.event_id == event_id).first():
        logger.info("Duplicate webhook ignored: %s", event_id)
        return WebhookResult(event_id=event_id, status="duplicate")

    event = WebhookEvent(
        event_id=event_id,
        integration_id=integration.id,
        shop_domain=shop_domain,
        topic=topic or "unknown",
        status="processing",
        payload=payload,
    )
    try:
        db.add(event)
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info("Duplicate webhook ignored (concurrent delivery): %s", event_id)
        return WebhookResult(event_id=event_id, status="duplicate")

    handler = TOPIC_HANDLERS.get(topic or "")
    if handler is None:
        logger.info("Unhandled webhook topic: %s", topic)
        event.status = "ignored"
        event.processed_at = utcnow()
        db.commit()
        return WebhookResult(event_id=event_id, status="ignored")

    try:
        handler(db, payload, integration)
    except Exception as e:
        db.rollback()
        logger.error("Webhook %s processing failed: %s", event_id, e)
        event.status = "failed"
        event.error = str(e)
        db.commit()
        return WebhookResult(event_id=event_id, status="failed", error=str(e))

    event.status = "processed"
    event.processed_at = utcnow()
    db.commit()
    return WebhookResult(event_id=event_id, status="processed")
