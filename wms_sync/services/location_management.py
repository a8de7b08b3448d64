"""
Shopify location lookup and provisioning.
Inventory is pushed to exactly one Shopify location per integration.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from wms_sync.config import settings
from wms_sync.services.errors import ShopifyApiError
from wms_sync.services.shopify_client import ShopifyClient

logger = logging.getLogger(__name__)


@dataclass
class EnsureLocationResult:
    location_id: str
    location_name: str
    created_by_us: bool


async def get_all_locations(client: ShopifyClient) -> list[dict]:
    data = await client.get("/locations.json")
    return data.get("locations") or []


async def get_shopify_locations(client: ShopifyClient) -> list[dict]:
    """Active locations only."""
    return [loc for loc in await get_all_locations(client) if loc.get("active")]


async def get_primary_location(client: ShopifyClient) -> Optional[dict]:
    """The shop's primary_location_id location, else the first active location."""
    shop = (await client.get("/shop.json")).get("shop") or {}
    primary_id = shop.get("primary_location_id")
    active = await get_shopify_locations(client)
    if primary_id is not None:
        for loc in active:
            if str(loc.get("id")) == str(primary_id):
                return loc
        logger.warning("Primary location %s on %s is missing or inactive", primary_id, client.shop_domain)
    return active[0] if active else None


async def get_shopify_location(client: ShopifyClient, location_id: str) -> Optional[dict]:
    """The location if it exists and is active; None on 404 or inactive."""
    try:
        data = await client.get(f"/locations/{location_id}.json")
    except ShopifyApiError as e:
        if e.status == 404:
            return None
        raise
    location = data.get("location") or {}
    return location if location.get("active") else None


async def verify_location_exists(client: ShopifyClient, location_id: str) -> bool:
    return await get_shopify_location(client, location_id) is not None


async def ensure_shopify_location(client: ShopifyClient, name: Optional[str] = None) -> EnsureLocationResult:
    """
    Find an active location with our name (case-insensitive) or create one.
    If creation is refused by Shopify (plan location limit, missing scope) the
    first active location is used instead.
    """
    name = name or settings.SHOPIFY_DEFAULT_LOCATION_NAME
    locations = await get_all_locations(client)

    for loc in locations:
        if loc.get("active") and (loc.get("name") or "").lower() == name.lower():
            logger.info("Found existing location %r (ID: %s) on %s", loc.get("name"), loc.get("id"), client.shop_domain)
            return EnsureLocationResult(str(loc["id"]), loc.get("name") or name, False)

    try:
        data = await client.post("/locations.json", {"location": {"name": name, "fulfills_online_orders": True}})
    except ShopifyApiError as e:
        logger.warning("Failed to create location on %s: %s. Checking for fallback...", client.shop_domain, e)
        active = [loc for loc in locations if loc.get("active")]
        if active:
            fallback = active[0]
            logger.warning("Using fallback location %r (ID: %s)", fallback.get("name"), fallback.get("id"))
            return EnsureLocationResult(str(fallback["id"]), fallback.get("name") or "", False)
        raise

    location = data.get("location") or {}
    logger.info("Created location %r (ID: %s) on %s", location.get("name"), location.get("id"), client.shop_domain)
    return EnsureLocationResult(str(location.get("id")), location.get("name") or name, True)
