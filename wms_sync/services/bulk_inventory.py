"""
Batch inventory push: GraphQL inventorySetQuantities in chunks of 100,
falling back to one REST inventory_levels/set call per item when a chunk fails.
Quantities are absolute ("set"), so re-pushing the same values is harmless.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from wms_sync.config import settings
from wms_sync.services.shopify_client import ShopifyClient

logger = logging.getLogger(__name__)

BATCH_SIZE = 100

INVENTORY_SET_QUANTITIES = """
mutation inventorySetQuantities($input: InventorySetQuantitiesInput!) {
  inventorySetQuantities(input: $input) {
    inventoryAdjustmentGroup { id }
    userErrors { field message }
  }
}
"""


@dataclass
class InventoryUpdate:
    inventory_item_id: str
    location_id: str
    quantity: int


@dataclass
class BulkUpdateResult:
    updated: int = 0
    failed: int = 0
    errors: list[dict] = field(default_factory=list)
    updated_item_ids: list[str] = field(default_factory=list)


def inventory_item_gid(item_id: str) -> str:
    return f"gid://shopify/InventoryItem/{item_id}"


def location_gid(location_id: str) -> str:
    return f"gid://shopify/Location/{location_id}"


def _chunks(items: list, size: int):
    for i in range(0, len(items), size):
        yield items[i:i + size]


def _legacy_id(value: str) -> int | str:
    try:
        return int(str(value).rsplit("/", 1)[-1])
    except ValueError:
        return value


async def _set_via_graphql(client: ShopifyClient, chunk: list[InventoryUpdate], reason: str) -> list[dict]:
    """Returns userErrors (empty on success). Raises on transport/API errors."""
    variables = {
        "input": {
            "name": "available",
            "reason": reason,
            "ignoreCompareQuantity": True,
            "quantities": [
                {
                    "inventoryItemId": inventory_item_gid(u.inventory_item_id),
                    "locationId": location_gid(u.location_id),
                    "quantity": u.quantity,
                }
                for u in chunk
            ],
        }
    }
    data = await client.graphql(INVENTORY_SET_QUANTITIES, variables)
    payload = data.get("inventorySetQuantities") or {}
    return payload.get("userErrors") or []


async def _set_via_rest(
    client: ShopifyClient,
    chunk: list[InventoryUpdate],
    result: BulkUpdateResult,
    sleep: Callable[[float], Awaitable[None]],
    delay: float,
) -> None:
    for i, u in enumerate(chunk):
        if i > 0 and delay:
            await sleep(delay)
        try:
            await client.post(
                "/inventory_levels/set.json",
                {
                    "location_id": _legacy_id(u.location_id),
                    "inventory_item_id": _legacy_id(u.inventory_item_id),
                    "available": u.quantity,
                },
            )
            result.updated += 1
            result.updated_item_ids.append(u.inventory_item_id)
        except Exception as e:
            result.failed += 1
            result.errors.append({"inventoryItemId": u.inventory_item_id, "error": str(e)})
            logger.warning("REST inventory set failed for item %s: %s", u.inventory_item_id, e)


async def batch_update_inventory(
    client: ShopifyClient,
    updates: list[InventoryUpdate],
    reason: str = "correction",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    rest_delay: Optional[float] = None,
) -> BulkUpdateResult:
    """
    Push absolute available quantities. Chunks run sequentially.
    A chunk whose GraphQL call raises or returns userErrors is retried item by item over REST.
    """
    result = BulkUpdateResult()
    if not updates:
        return result
    delay = settings.REST_FALLBACK_DELAY_SECONDS if rest_delay is None else rest_delay

    for chunk in _chunks(updates, BATCH_SIZE):
        try:
            user_errors = await _set_via_graphql(client, chunk, reason)
        except Exception as e:
            logger.warning("GraphQL inventory update failed for %s items, falling back to REST: %s", len(chunk), e)
            await _set_via_rest(client, chunk, result, sleep, delay)
            continue

        if user_errors:
            logger.warning(
                "GraphQL inventory update returned userErrors for %s items, falling back to REST: %s",
                len(chunk),
                "; ".join(str(ue.get("message")) for ue in user_errors),
            )
            await _set_via_rest(client, chunk, result, sleep, delay)
            continue

        result.updated += len(chunk)
        result.updated_item_ids.extend(u.inventory_item_id for u in chunk)

    logger.info("Batch inventory update on %s: %s updated, %s failed", client.shop_domain, result.updated, result.failed)
    return result
