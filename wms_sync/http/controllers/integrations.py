"""
Shopify integration routes: manual syncs, sync logs, products and locations, disconnect.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from wms_sync.database import get_db
from wms_sync.http.requests.schemas import (
    EnsureLocationRequest,
    IntegrationStatusResponse,
    InventorySyncResponse,
    LocationResponse,
    OrderSyncResponse,
    ShopifyLocation,
    ShopifyLocationsResponse,
    ShopifyVariantResponse,
    SyncInventoryRequest,
    SyncLogResponse,
    SyncOrdersRequest,
)
from wms_sync.models import Integration, SyncTrigger
from wms_sync.services.errors import IntegrationSettingsError, ShopifyApiError, SyncSetupError
from wms_sync.services.integration_settings import load_settings, save_settings
from wms_sync.services.integrations import disconnect_integration, get_integration
from wms_sync.services.inventory_sync import fetch_shopify_products, sync_inventory_to_shopify
from wms_sync.services.location_management import ensure_shopify_location, get_shopify_locations, verify_location_exists
from wms_sync.services.order_import import sync_shopify_orders
from wms_sync.services.shopify_client import ShopifyClient
from wms_sync.services.sync_logger import get_sync_logs

logger = logging.getLogger(__name__)
router = APIRouter()


def _get_integration_or_404(db: Session, integration_id: str) -> Integration:
    integration = get_integration(db, integration_id)
    if not integration:
        raise HTTPException(status_code=404, detail="Integration not found")
    return integration


def _status_response(integration: Integration) -> IntegrationStatusResponse:
    return IntegrationStatusResponse(
        id=integration.id,
        shop_domain=integration.shop_domain,
        status=integration.status,
        last_inventory_sync_at=integration.last_inventory_sync_at,
        last_order_sync_at=integration.last_order_sync_at,
        last_error_at=integration.last_error_at,
        last_error_message=integration.last_error_message,
    )


def _raise_sync_error(e: Exception) -> None:
    if isinstance(e, SyncSetupError):
        raise HTTPException(status_code=400, detail=str(e))
    if isinstance(e, ShopifyApiError):
        raise HTTPException(status_code=502, detail=str(e))
    raise e


@router.get("/{integration_id}", response_model=IntegrationStatusResponse)
async def get_integration_status(integration_id: str, db: Session = Depends(get_db)):
    """Sync timestamps and last error for an integration"""
    return _status_response(_get_integration_or_404(db, integration_id))


@router.post("/{integration_id}/sync-inventory", response_model=InventorySyncResponse)
async def sync_inventory(
    integration_id: str,
    request: Optional[SyncInventoryRequest] = Body(default=None),
    db: Session = Depends(get_db),
):
    """Push warehouse stock to Shopify now"""
    _get_integration_or_404(db, integration_id)
    product_ids = request.product_ids if request else None
    try:
        result = await sync_inventory_to_shopify(db, integration_id, product_ids, trigger=SyncTrigger.MANUAL.value)
    except (SyncSetupError, ShopifyApiError) as e:
        logger.warning("Manual inventory sync failed for %s: %s", integration_id, e)
        _raise_sync_error(e)
    return InventorySyncResponse(**result.as_dict())


@router.post("/{integration_id}/sync-orders", response_model=OrderSyncResponse)
async def sync_orders(
    integration_id: str,
    request: Optional[SyncOrdersRequest] = Body(default=None),
    db: Session = Depends(get_db),
):
    """Pull open, unfulfilled Shopify orders"""
    _get_integration_or_404(db, integration_id)
    since = request.since if request else None
    try:
        result = await sync_shopify_orders(db, integration_id, since=since, trigger=SyncTrigger.MANUAL.value)
    except (SyncSetupError, ShopifyApiError) as e:
        logger.warning("Manual order sync failed for %s: %s", integration_id, e)
        _raise_sync_error(e)
    return OrderSyncResponse(**result.as_dict())


@router.get("/{integration_id}/sync-logs", response_model=List[SyncLogResponse])
async def list_sync_logs(
    integration_id: str,
    limit: int = Query(50, ge=1, le=500),
    sync_type: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """Recent sync log entries, newest first"""
    _get_integration_or_404(db, integration_id)
    return [SyncLogResponse.from_row(row) for row in get_sync_logs(db, integration_id, limit=limit, sync_type=sync_type)]


@router.get("/{integration_id}/products", response_model=List[ShopifyVariantResponse])
async def list_shopify_products(integration_id: str, db: Session = Depends(get_db)):
    """Shopify variants available for mapping"""
    _get_integration_or_404(db, integration_id)
    try:
        return await fetch_shopify_products(db, integration_id)
    except (SyncSetupError, ShopifyApiError) as e:
        _raise_sync_error(e)


@router.get("/{integration_id}/locations", response_model=ShopifyLocationsResponse)
async def list_shopify_locations(integration_id: str, db: Session = Depends(get_db)):
    """Active Shopify locations, and whether the configured one still exists"""
    integration = _get_integration_or_404(db, integration_id)
    try:
        cfg = load_settings(integration)
        client = ShopifyClient.for_integration(integration)
        locations = await get_shopify_locations(client)
        active = None
        if cfg.shopify_location_id:
            active = await verify_location_exists(client, cfg.shopify_location_id)
    except IntegrationSettingsError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (SyncSetupError, ShopifyApiError) as e:
        _raise_sync_error(e)
    return ShopifyLocationsResponse(
        locations=[ShopifyLocation(id=str(loc["id"]), name=loc.get("name") or "") for loc in locations],
        configured_location_id=cfg.shopify_location_id,
        configured_location_active=active,
    )


@router.post("/{integration_id}/location", response_model=LocationResponse)
async def setup_location(
    integration_id: str,
    request: Optional[EnsureLocationRequest] = Body(default=None),
    db: Session = Depends(get_db),
):
    """Find or create the warehouse location in Shopify and store it on the integration"""
    integration = _get_integration_or_404(db, integration_id)
    try:
        client = ShopifyClient.for_integration(integration)
        result = await ensure_shopify_location(client, request.name if request else None)
    except (SyncSetupError, ShopifyApiError) as e:
        _raise_sync_error(e)
    save_settings(db, integration, shopify_location_id=result.location_id)
    return LocationResponse(
        location_id=result.location_id,
        location_name=result.location_name,
        created_by_us=result.created_by_us,
    )


@router.post("/{integration_id}/disconnect", response_model=IntegrationStatusResponse)
async def disconnect(integration_id: str, db: Session = Depends(get_db)):
    """Deactivate an integration; mappings and history are kept"""
    return _status_response(disconnect_integration(db, _get_integration_or_404(db, integration_id)))
