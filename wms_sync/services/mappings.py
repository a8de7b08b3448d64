"""
Mapping resolver: which internal products sync to which Shopify variants,
with their stock aggregated once here so engines never deal with raw rows.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from wms_sync.models import Integration, IntegrationStatus, Inventory, Product, ProductMapping
from wms_sync.services.errors import IntegrationSettingsError
from wms_sync.services.integration_settings import load_settings

logger = logging.getLogger(__name__)


@dataclass
class ProductSnapshot:
    product_id: str
    sku: str
    name: str
    price: Optional[float]
    on_hand: int
    reserved: int

    def available(self, buffer: int = 0) -> int:
        return max(0, self.on_hand - self.reserved - buffer)


@dataclass
class MappedProduct:
    mapping: ProductMapping
    product: Optional[ProductSnapshot]


def _stock_totals(db: Session, product_ids: list[str], location_id: Optional[str]) -> dict[str, tuple[int, int]]:
    q = db.query(
        Inventory.product_id,
        func.coalesce(func.sum(Inventory.qty_on_hand), 0),
        func.coalesce(func.sum(Inventory.qty_reserved), 0),
    ).filter(Inventory.product_id.in_(product_ids))
    if location_id:
        q = q.filter(Inventory.location_id == location_id)
    return {pid: (int(on_hand), int(reserved)) for pid, on_hand, reserved in q.group_by(Inventory.product_id).all()}


def resolve_sync_mappings(
    db: Session,
    integration_id: str,
    product_ids: Optional[Iterable[str]] = None,
    location_id: Optional[str] = None,
) -> list[MappedProduct]:
    """
    Mappings with sync_inventory enabled for the integration, scoped to product_ids when
    any are given, each paired with an aggregated stock snapshot (None when the product row is gone).
    """
    q = db.query(ProductMapping).filter(
        ProductMapping.integration_id == integration_id,
        ProductMapping.sync_inventory.is_(True),
    )
    ids = list(product_ids or [])
    if ids:
        q = q.filter(ProductMapping.product_id.in_(ids))
    mappings = q.all()
    if not mappings:
        return []

    wanted = list({m.product_id for m in mappings})
    products = {p.id: p for p in db.query(Product).filter(Product.id.in_(wanted)).all()}
    totals = _stock_totals(db, wanted, location_id)

    resolved = []
    for m in mappings:
        p = products.get(m.product_id)
        snapshot = None
        if p is not None:
            on_hand, reserved = totals.get(p.id, (0, 0))
            snapshot = ProductSnapshot(
                product_id=p.id,
                sku=p.sku,
                name=p.name,
                price=float(p.price) if p.price is not None else None,
                on_hand=on_hand,
                reserved=reserved,
            )
        resolved.append(MappedProduct(mapping=m, product=snapshot))
    return resolved


def integrations_for_products(db: Session, product_ids: Iterable[str]) -> dict[str, list[str]]:
    """
    Group product ids by the integrations that auto-sync them:
    sync_inventory mappings on active integrations with auto_sync_inventory on.
    """
    ids = list(set(product_ids))
    if not ids:
        return {}
    rows = (
        db.query(ProductMapping.integration_id, ProductMapping.product_id, Integration)
        .join(Integration, Integration.id == ProductMapping.integration_id)
        .filter(
            ProductMapping.product_id.in_(ids),
            ProductMapping.sync_inventory.is_(True),
            Integration.status == IntegrationStatus.ACTIVE.value,
        )
        .all()
    )
    grouped: dict[str, list[str]] = defaultdict(list)
    enabled: dict[str, bool] = {}
    for integration_id, product_id, integration in rows:
        if integration_id not in enabled:
            try:
                enabled[integration_id] = load_settings(integration).auto_sync_inventory
            except IntegrationSettingsError as e:
                logger.warning("Skipping integration %s: %s", integration_id, e)
                enabled[integration_id] = False
        if enabled[integration_id] and product_id not in grouped[integration_id]:
            grouped[integration_id].append(product_id)
    return {k: v for k, v in grouped.items() if v}


def mappings_by_variant_and_sku(db: Session, integration_id: str) -> tuple[dict[str, ProductMapping], dict[str, ProductMapping]]:
    """Lookup tables for order import: by external variant id, and by lower-cased external SKU."""
    by_variant: dict[str, ProductMapping] = {}
    by_sku: dict[str, ProductMapping] = {}
    for m in db.query(ProductMapping).filter(ProductMapping.integration_id == integration_id).all():
        if m.external_variant_id:
            by_variant[str(m.external_variant_id)] = m
        if m.external_sku:
            by_sku[m.external_sku.strip().lower()] = m
    return by_variant, by_sku


def variant_ids_by_product(db: Session, integration_id: str, product_ids: Iterable[str]) -> dict[str, str]:
    ids = list(set(product_ids))
    if not ids:
        return {}
    rows = (
        db.query(ProductMapping.product_id, ProductMapping.external_variant_id)
        .filter(ProductMapping.integration_id == integration_id, ProductMapping.product_id.in_(ids))
        .all()
    )
    return {pid: str(vid) for pid, vid in rows if vid}
