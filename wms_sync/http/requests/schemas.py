"""
Pydantic schemas for request/response validation (Http/Requests).
"""
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Any
from datetime import datetime


# Sync requests
class SyncInventoryRequest(BaseModel):
    product_ids: Optional[List[str]] = None


class SyncOrdersRequest(BaseModel):
    since: Optional[datetime] = None


class EnsureLocationRequest(BaseModel):
    name: Optional[str] = None

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError('Location name cannot be blank')
        return v


# Responses
class InventorySyncResponse(BaseModel):
    updated: int
    failed: int
    errors: List[dict] = []
    prices_updated: int = 0
    prices_failed: int = 0


class OrderSyncResponse(BaseModel):
    imported: int
    skipped: int
    failed: int


class LocationResponse(BaseModel):
    location_id: str
    location_name: str
    created_by_us: bool


class ShopifyLocation(BaseModel):
    id: str
    name: str


class ShopifyLocationsResponse(BaseModel):
    locations: List[ShopifyLocation]
    configured_location_id: Optional[str] = None
    configured_location_active: Optional[bool] = None


class ShopifyVariantResponse(BaseModel):
    product_id: str
    variant_id: str
    title: str
    variant_title: str
    sku: str
    inventory_item_id: str
    inventory_quantity: int


class SyncLogResponse(BaseModel):
    id: str
    sync_type: str
    direction: str
    status: str
    items_processed: int
    items_failed: int
    error_details: Optional[List[Any]] = None
    duration_ms: Optional[int] = None
    triggered_by: str
    metadata: Optional[dict] = Field(default=None)
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row) -> "SyncLogResponse":
        return cls(
            id=row.id,
            sync_type=row.sync_type,
            direction=row.direction,
            status=row.status,
            items_processed=row.items_processed or 0,
            items_failed=row.items_failed or 0,
            error_details=row.error_details,
            duration_ms=row.duration_ms,
            triggered_by=row.triggered_by,
            metadata=row.extra,
            created_at=row.created_at,
        )


class IntegrationStatusResponse(BaseModel):
    id: str
    shop_domain: Optional[str] = None
    status: str
    last_inventory_sync_at: Optional[datetime] = None
    last_order_sync_at: Optional[datetime] = None
    last_error_at: Optional[datetime] = None
    last_error_message: Optional[str] = None
