"""
SQLAlchemy models for the warehouse and its Shopify integrations.
All model and enum definitions live here to avoid circular imports.
"""
from sqlalchemy import Column, String, Integer, Boolean, DateTime, ForeignKey, Numeric, Text, JSON, UniqueConstraint, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from wms_sync.database import Base
import enum
import uuid


def _uuid() -> str:
    return str(uuid.uuid4())


# Enums
class IntegrationStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    ERROR = "error"

class SyncType(str, enum.Enum):
    INVENTORY = "inventory"
    ORDERS = "orders"
    PRICE = "price"
    RETURN = "return"
    INCOMING = "incoming"

class SyncDirection(str, enum.Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"

class SyncStatus(str, enum.Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"

class SyncTrigger(str, enum.Enum):
    EVENT = "event"
    MANUAL = "manual"
    SCHEDULED = "scheduled"
    WEBHOOK = "webhook"

class OutboundOrderStatus(str, enum.Enum):
    PENDING = "pending"
    PICKING = "picking"
    PACKED = "packed"
    SHIPPED = "shipped"
    CANCELLED = "cancelled"

class InboundOrderStatus(str, enum.Enum):
    ORDERED = "ordered"
    IN_TRANSIT = "in_transit"
    ARRIVED = "arrived"
    RECEIVED = "received"
    CANCELLED = "cancelled"

class ReturnDisposition(str, enum.Enum):
    RESTOCK = "restock"
    DAMAGED = "damaged"
    DISPOSE = "dispose"

# Inbound statuses whose outstanding quantity counts as "incoming"
OPEN_INBOUND_STATUSES = (
    InboundOrderStatus.ORDERED.value,
    InboundOrderStatus.IN_TRANSIT.value,
    InboundOrderStatus.ARRIVED.value,
)

EXTERNAL_PLATFORM_SHOPIFY = "shopify"


# Models
class Integration(Base):
    __tablename__ = "client_integrations"

    id = Column(String, primary_key=True, default=_uuid)
    client_id = Column("client_id", String, nullable=False, index=True)
    platform = Column("platform", String, nullable=False, default=EXTERNAL_PLATFORM_SHOPIFY)
    shop_domain = Column("shop_domain", String, nullable=True, index=True)
    shop_name = Column("shop_name", String, nullable=True)
    access_token = Column("access_token", Text, nullable=True)  # Fernet-encrypted
    status = Column("status", String, nullable=False, default=IntegrationStatus.ACTIVE.value, index=True)
    settings = Column("settings", JSON, nullable=True)
    last_inventory_sync_at = Column("last_inventory_sync_at", DateTime(timezone=True), nullable=True)
    last_order_sync_at = Column("last_order_sync_at", DateTime(timezone=True), nullable=True)
    last_error_at = Column("last_error_at", DateTime(timezone=True), nullable=True)
    last_error_message = Column("last_error_message", Text, nullable=True)
    created_at = Column("created_at", DateTime(timezone=True), server_default=func.now())
    updated_at = Column("updated_at", DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    mappings = relationship("ProductMapping", back_populates="integration")
    sync_logs = relationship("IntegrationSyncLog", back_populates="integration")


class Product(Base):
    __tablename__ = "products"

    id = Column(String, primary_key=True, default=_uuid)
    client_id = Column("client_id", String, nullable=True, index=True)
    sku = Column("sku", String, nullable=False, index=True)
    name = Column("name", String, nullable=False)
    price = Column("price", Numeric(12, 2), nullable=True)
    created_at = Column("created_at", DateTime(timezone=True), server_default=func.now())

    inventory = relationship("Inventory", back_populates="product")


class Location(Base):
    __tablename__ = "locations"

    id = Column(String, primary_key=True, default=_uuid)
    name = Column("name", String, nullable=False)
    created_at = Column("created_at", DateTime(timezone=True), server_default=func.now())


class Inventory(Base):
    __tablename__ = "inventory"

    id = Column(String, primary_key=True, default=_uuid)
    product_id = Column("product_id", String, ForeignKey("products.id"), nullable=False, index=True)
    location_id = Column("location_id", String, ForeignKey("locations.id"), nullable=False, index=True)
    qty_on_hand = Column("qty_on_hand", Integer, nullable=False, default=0)
    qty_reserved = Column("qty_reserved", Integer, nullable=False, default=0)
    updated_at = Column("updated_at", DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    product = relationship("Product", back_populates="inventory")

    __table_args__ = (UniqueConstraint("product_id", "location_id", name="uq_inventory_product_location"),)


class ProductMapping(Base):
    __tablename__ = "product_mappings"

    id = Column(String, primary_key=True, default=_uuid)
    integration_id = Column("integration_id", String, ForeignKey("client_integrations.id"), nullable=False, index=True)
    product_id = Column("product_id", String, ForeignKey("products.id"), nullable=False, index=True)
    sync_inventory = Column("sync_inventory", Boolean, nullable=False, default=True)
    sync_price = Column("sync_price", Boolean, nullable=False, default=False)
    external_product_id = Column("external_product_id", String, nullable=True)
    external_variant_id = Column("external_variant_id", String, nullable=True, index=True)
    external_inventory_item_id = Column("external_inventory_item_id", String, nullable=True)
    external_sku = Column("external_sku", String, nullable=True)
    incoming_qty = Column("incoming_qty", Integer, nullable=False, default=0)
    incoming_updated_at = Column("incoming_updated_at", DateTime(timezone=True), nullable=True)
    last_synced_at = Column("last_synced_at", DateTime(timezone=True), nullable=True)
    created_at = Column("created_at", DateTime(timezone=True), server_default=func.now())

    integration = relationship("Integration", back_populates="mappings")
    product = relationship("Product")

    __table_args__ = (UniqueConstraint("integration_id", "product_id", name="uq_mapping_integration_product"),)


class IntegrationSyncLog(Base):
    """Append-only record of one sync run."""
    __tablename__ = "integration_sync_logs"

    id = Column(String, primary_key=True, default=_uuid)
    integration_id = Column("integration_id", String, ForeignKey("client_integrations.id"), nullable=False, index=True)
    sync_type = Column("sync_type", String, nullable=False)
    direction = Column("direction", String, nullable=False)
    status = Column("status", String, nullable=False)
    items_processed = Column("items_processed", Integer, nullable=False, default=0)
    items_failed = Column("items_failed", Integer, nullable=False, default=0)
    error_details = Column("error_details", JSON, nullable=True)
    duration_ms = Column("duration_ms", Integer, nullable=True)
    triggered_by = Column("triggered_by", String, nullable=False)
    # "metadata" is reserved on declarative classes
    extra = Column("metadata", JSON, nullable=True)
    created_at = Column("created_at", DateTime(timezone=True), server_default=func.now(), index=True)

    integration = relationship("Integration", back_populates="sync_logs")


class OutboundOrder(Base):
    __tablename__ = "outbound_orders"

    id = Column(String, primary_key=True, default=_uuid)
    client_id = Column("client_id", String, nullable=True, index=True)
    order_number = Column("order_number", String, nullable=False, index=True)
    status = Column("status", String, nullable=False, default=OutboundOrderStatus.PENDING.value)
    source = Column("source", String, nullable=True)
    integration_id = Column("integration_id", String, ForeignKey("client_integrations.id"), nullable=True, index=True)
    external_order_id = Column("external_order_id", String, nullable=True)
    external_platform = Column("external_platform", String, nullable=True)
    external_order_number = Column("external_order_number", String, nullable=True)
    ship_to_name = Column("ship_to_name", String, nullable=True)
    ship_to_company = Column("ship_to_company", String, nullable=True)
    ship_to_address = Column("ship_to_address", String, nullable=True)
    ship_to_address2 = Column("ship_to_address2", String, nullable=True)
    ship_to_city = Column("ship_to_city", String, nullable=True)
    ship_to_state = Column("ship_to_state", String, nullable=True)
    ship_to_postal_code = Column("ship_to_postal_code", String, nullable=True)
    ship_to_country = Column("ship_to_country", String, nullable=True)
    ship_to_phone = Column("ship_to_phone", String, nullable=True)
    ship_to_email = Column("ship_to_email", String, nullable=True)
    shipping_method = Column("shipping_method", String, nullable=True)
    is_rush = Column("is_rush", Boolean, nullable=False, default=False)
    notes = Column("notes", Text, nullable=True)
    carrier = Column("carrier", String, nullable=True)
    tracking_number = Column("tracking_number", String, nullable=True)
    tracking_url = Column("tracking_url", String, nullable=True)
    requested_at = Column("requested_at", DateTime(timezone=True), nullable=True)
    shipped_at = Column("shipped_at", DateTime(timezone=True), nullable=True)
    created_at = Column("created_at", DateTime(timezone=True), server_default=func.now())

    items = relationship("OutboundItem", back_populates="order", cascade="all, delete-orphan")
    integration = relationship("Integration")

    __table_args__ = (
        Index("uq_outbound_external_order", "external_platform", "external_order_id", unique=True),
    )


class OutboundItem(Base):
    __tablename__ = "outbound_items"

    id = Column(String, primary_key=True, default=_uuid)
    order_id = Column("order_id", String, ForeignKey("outbound_orders.id"), nullable=False, index=True)
    product_id = Column("product_id", String, ForeignKey("products.id"), nullable=False)
    qty_requested = Column("qty_requested", Integer, nullable=False)
    qty_shipped = Column("qty_shipped", Integer, nullable=False, default=0)
    unit_price = Column("unit_price", Numeric(12, 2), nullable=True)

    order = relationship("OutboundOrder", back_populates="items")


class InboundOrder(Base):
    __tablename__ = "inbound_orders"

    id = Column(String, primary_key=True, default=_uuid)
    client_id = Column("client_id", String, nullable=True, index=True)
    reference = Column("reference", String, nullable=True)
    status = Column("status", String, nullable=False, default=InboundOrderStatus.ORDERED.value, index=True)
    expected_at = Column("expected_at", DateTime(timezone=True), nullable=True)
    created_at = Column("created_at", DateTime(timezone=True), server_default=func.now())

    items = relationship("InboundItem", back_populates="order", cascade="all, delete-orphan")


class InboundItem(Base):
    __tablename__ = "inbound_items"

    id = Column(String, primary_key=True, default=_uuid)
    inbound_order_id = Column("inbound_order_id", String, ForeignKey("inbound_orders.id"), nullable=False, index=True)
    product_id = Column("product_id", String, ForeignKey("products.id"), nullable=False, index=True)
    qty_expected = Column("qty_expected", Integer, nullable=False, default=0)
    qty_received = Column("qty_received", Integer, nullable=False, default=0)

    order = relationship("InboundOrder", back_populates="items")


class Return(Base):
    __tablename__ = "returns"

    id = Column(String, primary_key=True, default=_uuid)
    original_order_id = Column("original_order_id", String, ForeignKey("outbound_orders.id"), nullable=True)
    status = Column("status", String, nullable=False, default="received")
    created_at = Column("created_at", DateTime(timezone=True), server_default=func.now())

    items = relationship("ReturnItem", back_populates="return_", cascade="all, delete-orphan")
    original_order = relationship("OutboundOrder")


class ReturnItem(Base):
    __tablename__ = "return_items"

    id = Column(String, primary_key=True, default=_uuid)
    return_id = Column("return_id", String, ForeignKey("returns.id"), nullable=False, index=True)
    product_id = Column("product_id", String, ForeignKey("products.id"), nullable=False)
    qty_received = Column("qty_received", Integer, nullable=False, default=0)
    disposition = Column("disposition", String, nullable=True)

    return_ = relationship("Return", back_populates="items")


class WebhookEvent(Base):
    __tablename__ = "webhook_events"

    id = Column(String, primary_key=True, default=_uuid)
    event_id = Column("event_id", String, nullable=False, unique=True)
    integration_id = Column("integration_id", String, ForeignKey("client_integrations.id"), nullable=True, index=True)
    shop_domain = Column("shop_domain", String, nullable=True, index=True)
    topic = Column("topic", String, nullable=False, index=True)
    status = Column("status", String, nullable=False, default="received")
    payload = Column("payload", JSON, nullable=True)
    processed_at = Column("processed_at", DateTime(timezone=True), nullable=True)
    error = Column("error", Text, nullable=True)
    created_at = Column("created_at", DateTime(timezone=True), server_default=func.now())
