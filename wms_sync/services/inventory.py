"""
Warehouse stock mutations and the Shopify side effects they enqueue.
A sync failure never rolls back or blocks the stock change that caused it.
"""
import logging
from typing import Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from wms_sync.database import SessionLocal
from wms_sync.models import (
    EXTERNAL_PLATFORM_SHOPIFY,
    InboundItem,
    InboundOrder,
    InboundOrderStatus,
    Inventory,
    OutboundOrder,
    OutboundOrderStatus,
    Return,
    ReturnDisposition,
)
from wms_sync.services.event_sync import trigger_immediate_inventory_sync, trigger_inventory_sync
from wms_sync.services.fulfillment_sync import sync_fulfillment_to_shopify
from wms_sync.services.integrations import utcnow
from wms_sync.services.returns_sync import sync_return_to_shopify
from wms_sync.services.task_queue import side_effects

logger = logging.getLogger(__name__)


def update_inventory(db: Session, product_id: str, location_id: str, delta: int) -> int:
    """
    Atomically add `delta` to qty_on_hand for (product, location), creating the row if needed.
    Returns the new on-hand quantity. Does not commit.
    """
    stmt = (
        update(Inventory)
        .where(Inventory.product_id == product_id, Inventory.location_id == location_id)
        .values(qty_on_hand=Inventory.qty_on_hand + delta)
    )
    if db.execute(stmt).rowcount == 0:
        try:
            with db.begin_nested():
                db.add(Inventory(product_id=product_id, location_id=location_id, qty_on_hand=delta, qty_reserved=0))
        except IntegrityError:
            # Row created concurrently; apply the delta to it
            db.execute(stmt)
    return db.execute(
        select(Inventory.qty_on_hand).where(Inventory.product_id == product_id, Inventory.location_id == location_id)
    ).scalar_one()


def release_reservation(db: Session, product_id: str, location_id: str, qty: int) -> None:
    """Atomically release up to `qty` reserved units (never below zero). Does not commit."""
    where = (Inventory.product_id == product_id, Inventory.location_id == location_id)
    db.execute(update(Inventory).where(*where).values(qty_reserved=Inventory.qty_reserved - qty))
    db.execute(update(Inventory).where(*where, Inventory.qty_reserved < 0).values(qty_reserved=0))


def enqueue_inventory_sync(product_ids: Iterable[str], immediate: bool = False) -> bool:
    ids = sorted(set(product_ids))
    if not ids:
        return False
    if immediate:
        return side_effects.enqueue(f"inventory_sync_now:{','.join(ids)}", lambda: trigger_immediate_inventory_sync(ids))
    return side_effects.enqueue(f"inventory_sync:{','.join(ids)}", lambda: trigger_inventory_sync(ids))


async def _run_fulfillment_sync(order_id: str, tracking_number: str, carrier: str, tracking_url: Optional[str], items: Optional[list[dict]]):
    with SessionLocal() as db:
        return await sync_fulfillment_to_shopify(db, order_id, tracking_number, carrier, tracking_url, items)


async def _run_return_sync(return_id: str):
    with SessionLocal() as db:
        return await sync_return_to_shopify(db, return_id)


def adjust_stock(db: Session, product_id: str, location_id: str, delta: int, reason: str = "adjustment") -> int:
    """Manual stock adjustment (cycle count, damage). Debounced Shopify sync."""
    qty = update_inventory(db, product_id, location_id, delta)
    db.commit()
    logger.info("Adjusted stock of %s at %s by %s (%s), now %s", product_id, location_id, delta, reason, qty)
    enqueue_inventory_sync([product_id])
    return qty


def receive_inbound_item(db: Session, inbound_item_id: str, location_id: str, qty: int) -> InboundItem:
    """Receive units against an inbound line. Marks the inbound order received once every line is complete."""
    item = db.query(InboundItem).filter(InboundItem.id == inbound_item_id).first()
    if item is None:
        raise ValueError(f"Inbound item {inbound_item_id} not found")
    if qty <= 0:
        raise ValueError("Received quantity must be positive")

    item.qty_received = (item.qty_received or 0) + qty
    update_inventory(db, item.product_id, location_id, qty)

    order = db.query(InboundOrder).filter(InboundOrder.id == item.inbound_order_id).first()
    if order and all((i.qty_received or 0) >= (i.qty_expected or 0) for i in order.items):
        order.status = InboundOrderStatus.RECEIVED.value
    db.commit()

    enqueue_inventory_sync([item.product_id])
    return item


def ship_outbound_order(
    db: Session,
    order_id: str,
    location_id: str,
    carrier: str,
    tracking_number: str,
    tracking_url: Optional[str] = None,
    items: Optional[list[dict]] = None,
) -> OutboundOrder:
    """
    Ship an order (all lines, or `items` [{product_id, quantity}] for a partial shipment).
    Enqueues an immediate inventory sync and, for Shopify orders, the fulfillment sync.
    """
    order = db.query(OutboundOrder).filter(OutboundOrder.id == order_id).first()
    if order is None:
        raise ValueError(f"Order {order_id} not found")

    shipped: dict[str, int] = {}
    if items:
        for entry in items:
            shipped[entry["product_id"]] = shipped.get(entry["product_id"], 0) + int(entry["quantity"])
    else:
        for line in order.items:
            remaining = line.qty_requested - (line.qty_shipped or 0)
            if remaining > 0:
                shipped[line.product_id] = shipped.get(line.product_id, 0) + remaining

    for product_id, qty in shipped.items():
        update_inventory(db, product_id, location_id, -qty)
    to_allocate = dict(shipped)
    for line in order.items:
        want = to_allocate.get(line.product_id, 0)
        take = min(want, line.qty_requested - (line.qty_shipped or 0))
        if take > 0:
            line.qty_shipped = (line.qty_shipped or 0) + take
            to_allocate[line.product_id] = want - take

    if all((line.qty_shipped or 0) >= line.qty_requested for line in order.items):
        order.status = OutboundOrderStatus.SHIPPED.value
    order.carrier = carrier
    order.tracking_number = tracking_number
    order.tracking_url = tracking_url
    order.shipped_at = utcnow()
    db.commit()
    logger.info("Shipped order %s via %s (%s)", order.order_number, carrier, tracking_number)

    enqueue_inventory_sync(shipped.keys(), immediate=True)
    if order.external_platform == EXTERNAL_PLATFORM_SHOPIFY and order.external_order_id:
        side_effects.enqueue(
            f"fulfillment_sync:{order_id}",
            lambda: _run_fulfillment_sync(order_id, tracking_number, carrier, tracking_url, items),
        )
    return order


def complete_return(db: Session, return_id: str, location_id: str) -> Return:
    """Put restockable units back on the shelf and refund the Shopify order."""
    record = db.query(Return).filter(Return.id == return_id).first()
    if record is None:
        raise ValueError(f"Return {return_id} not found")

    restocked = []
    for item in record.items:
        if item.disposition == ReturnDisposition.RESTOCK.value and (item.qty_received or 0) > 0:
            update_inventory(db, item.product_id, location_id, item.qty_received)
            restocked.append(item.product_id)
    record.status = "completed"
    db.commit()

    enqueue_inventory_sync(restocked)
    side_effects.enqueue(f"return_sync:{return_id}", lambda: _run_return_sync(return_id))
    return record
