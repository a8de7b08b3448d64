"""
Inventory sync engine: push warehouse available quantities to a Shopify location.
Warehouse stock is the source of truth; Shopify receives absolute "set" values.
"""
import asyncio
import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable, Optional

from sqlalchemy.orm import Session

from wms_sync.config import settings
from wms_sync.models import Integration, ProductMapping, SyncDirection, SyncType
from wms_sync.services.bulk_inventory import InventoryUpdate, batch_update_inventory
from wms_sync.services.errors import SyncSetupError
from wms_sync.services.integration_settings import IntegrationSettings, save_settings
from wms_sync.services.integrations import get_integration, require_active_integration, utcnow
from wms_sync.services.location_management import get_primary_location
from wms_sync.services.mappings import MappedProduct, resolve_sync_mappings
from wms_sync.services.shopify_client import ShopifyClient
from wms_sync.services.sync_logger import SyncLogEntry, log_sync_result

logger = logging.getLogger(__name__)


@dataclass
class InventorySyncResult:
    updated: int = 0
    failed: int = 0
    errors: list[dict] = field(default_factory=list)
    prices_updated: int = 0
    prices_failed: int = 0

    def as_dict(self) -> dict:
        return {
            "updated": self.updated,
            "failed": self.failed,
            "errors": self.errors,
            "prices_updated": self.prices_updated,
            "prices_failed": self.prices_failed,
        }


async def resolve_shopify_location_id(
    db: Session,
    integration: Integration,
    cfg: IntegrationSettings,
    client: ShopifyClient,
) -> str:
    """Cached location id from settings, else the shop's primary location (persisted for next time)."""
    if cfg.shopify_location_id:
        return cfg.shopify_location_id
    primary = await get_primary_location(client)
    if not primary or primary.get("id") is None:
        raise SyncSetupError("No Shopify location found. Please configure a location ID.")
    location_id = str(primary["id"])
    save_settings(db, integration, shopify_location_id=location_id)
    logger.info("Cached primary Shopify location %s for integration %s", location_id, integration.id)
    return location_id


def _build_updates(
    mapped: list[MappedProduct],
    location_id: str,
    buffer: int,
    result: InventorySyncResult,
) -> tuple[list[InventoryUpdate], dict[str, list[ProductMapping]]]:
    updates: list[InventoryUpdate] = []
    by_item: dict[str, list[ProductMapping]] = defaultdict(list)
    for entry in mapped:
        mapping = entry.mapping
        if not mapping.external_inventory_item_id:
            result.failed += 1
            result.errors.append({"productId": mapping.product_id, "error": "Missing external_inventory_item_id"})
            continue
        if entry.product is None:
            result.failed += 1
            result.errors.append({"productId": mapping.product_id, "error": "Product not found"})
            continue
        item_id = str(mapping.external_inventory_item_id)
        if item_id not in by_item:
            updates.append(InventoryUpdate(item_id, location_id, entry.product.available(buffer)))
        by_item[item_id].append(mapping)
    return updates, by_item


async def _push_prices(
    client: ShopifyClient,
    mapped: list[MappedProduct],
    sleep: Callable[[float], Awaitable[None]],
) -> tuple[int, int, list[dict]]:
    """One PUT per variant with a fixed delay between calls."""
    updated, failed, errors = 0, 0, []
    candidates = [
        e for e in mapped
        if e.mapping.sync_price and e.mapping.external_variant_id and e.product and e.product.price is not None
    ]
    for i, entry in enumerate(candidates):
        if i > 0 and settings.PRICE_SYNC_DELAY_SECONDS:
            await sleep(settings.PRICE_SYNC_DELAY_SECONDS)
        variant_id = entry.mapping.external_variant_id
        try:
            await client.put(
                f"/variants/{variant_id}.json",
                {"variant": {"id": int(variant_id), "price": f"{entry.product.price:.2f}"}},
            )
            updated += 1
        except Exception as e:
            failed += 1
            errors.append({"productId": entry.mapping.product_id, "error": str(e)})
            logger.warning("Price sync failed for variant %s: %s", variant_id, e)
    return updated, failed, errors


async def sync_inventory_to_shopify(
    db: Session,
    integration_id: str,
    product_ids: Optional[Iterable[str]] = None,
    trigger: str = "manual",
    client: Optional[ShopifyClient] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> InventorySyncResult:
    """
    Push available = max(0, on_hand - reserved - buffer) for every sync-enabled mapping.
    Raises SyncSetupError for integration-level problems; per-item failures land in the result.
    """
    started = time.monotonic()
    integration, cfg = require_active_integration(db, integration_id)
    client = client or ShopifyClient.for_integration(integration)

    location_id = await resolve_shopify_location_id(db, integration, cfg, client)
    mapped = resolve_sync_mappings(db, integration_id, product_ids, location_id=cfg.default_location_id)

    result = InventorySyncResult()
    if not mapped:
        logger.info("No sync-enabled mappings for integration %s", integration_id)
        return result

    updates, by_item = _build_updates(mapped, location_id, cfg.inventory_buffer, result)
    bulk = await batch_update_inventory(client, updates, reason="correction", sleep=sleep)

    now = utcnow()
    for item_id in bulk.updated_item_ids:
        for mapping in by_item.get(item_id, []):
            mapping.last_synced_at = now
            result.updated += 1
    for err in bulk.errors:
        for mapping in by_item.get(err.get("inventoryItemId"), []):
            result.failed += 1
            result.errors.append({"productId": mapping.product_id, "error": err.get("error")})

    price_errors: list[dict] = []
    if cfg.auto_sync_prices:
        result.prices_updated, result.prices_failed, price_errors = await _push_prices(client, mapped, sleep)

    integration.last_inventory_sync_at = now
    db.commit()

    duration_ms = int((time.monotonic() - started) * 1000)
    log_sync_result(db, SyncLogEntry(
        integration_id=integration_id,
        sync_type=SyncType.INVENTORY.value,
        direction=SyncDirection.OUTBOUND.value,
        items_processed=result.updated,
        items_failed=result.failed,
        error_details=result.errors,
        duration_ms=duration_ms,
        triggered_by=trigger,
        metadata={"location_id": location_id, "product_count": len(mapped)},
    ))
    if result.prices_updated or result.prices_failed:
        log_sync_result(db, SyncLogEntry(
            integration_id=integration_id,
            sync_type=SyncType.PRICE.value,
            direction=SyncDirection.OUTBOUND.value,
            items_processed=result.prices_updated,
            items_failed=result.prices_failed,
            error_details=price_errors,
            triggered_by=trigger,
        ))

    logger.info(
        "Inventory sync for integration %s (%s): %s updated, %s failed",
        integration_id, trigger, result.updated, result.failed,
    )
    return result


async def fetch_shopify_products(db: Session, integration_id: str, client: Optional[ShopifyClient] = None) -> list[dict]:
    """Flatten the shop's products into one row per variant, for building mappings."""
    integration = get_integration(db, integration_id)
    client = client or ShopifyClient.for_integration(integration)
    products = await client.get_all("/products.json", "products", params={"limit": 250})
    rows = []
    for product in products:
        for variant in product.get("variants") or []:
            rows.append({
                "product_id": str(product.get("id")),
                "variant_id": str(variant.get("id")),
                "title": product.get("title") or "",
                "variant_title": variant.get("title") or "",
                "sku": variant.get("sku") or "",
                "inventory_item_id": str(variant.get("inventory_item_id")),
                "inventory_quantity": variant.get("inventory_quantity") or 0,
            })
    return rows
