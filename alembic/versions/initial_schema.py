"""initial schema: products, stock, orders, Shopify integrations and sync logs

Revision ID: initial_schema
Revises:
Create Date: 2026-01-12

"""
from alembic import op
import sqlalchemy as sa


revision = "initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def _created_at():
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now())


def upgrade() -> None:
    op.create_table(
        "client_integrations",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("client_id", sa.String(), nullable=False),
        sa.Column("platform", sa.String(), nullable=False),
        sa.Column("shop_domain", sa.String(), nullable=True),
        sa.Column("shop_name", sa.String(), nullable=True),
        sa.Column("access_token", sa.Text(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("settings", sa.JSON(), nullable=True),
        sa.Column("last_inventory_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_order_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error_message", sa.Text(), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_client_integrations_client_id", "client_integrations", ["client_id"])
    op.create_index("ix_client_integrations_shop_domain", "client_integrations", ["shop_domain"])
    op.create_index("ix_client_integrations_status", "client_integrations", ["status"])

    op.create_table(
        "products",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("client_id", sa.String(), nullable=True),
        sa.Column("sku", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_products_client_id", "products", ["client_id"])
    op.create_index("ix_products_sku", "products", ["sku"])

    op.create_table(
        "locations",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "inventory",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("product_id", sa.String(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("location_id", sa.String(), sa.ForeignKey("locations.id"), nullable=False),
        sa.Column("qty_on_hand", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("qty_reserved", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("product_id", "location_id", name="uq_inventory_product_location"),
    )
    op.create_index("ix_inventory_product_id", "inventory", ["product_id"])
    op.create_index("ix_inventory_location_id", "inventory", ["location_id"])

    op.create_table(
        "product_mappings",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("integration_id", sa.String(), sa.ForeignKey("client_integrations.id"), nullable=False),
        sa.Column("product_id", sa.String(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("sync_inventory", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("sync_price", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("external_product_id", sa.String(), nullable=True),
        sa.Column("external_variant_id", sa.String(), nullable=True),
        sa.Column("external_inventory_item_id", sa.String(), nullable=True),
        sa.Column("external_sku", sa.String(), nullable=True),
        sa.Column("incoming_qty", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("incoming_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("integration_id", "product_id", name="uq_mapping_integration_product"),
    )
    op.create_index("ix_product_mappings_integration_id", "product_mappings", ["integration_id"])
    op.create_index("ix_product_mappings_product_id", "product_mappings", ["product_id"])
    op.create_index("ix_product_mappings_external_variant_id", "product_mappings", ["external_variant_id"])

    op.create_table(
        "integration_sync_logs",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("integration_id", sa.String(), sa.ForeignKey("client_integrations.id"), nullable=False),
        sa.Column("sync_type", sa.String(), nullable=False),
        sa.Column("direction", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("items_processed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("items_failed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_details", sa.JSON(), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("triggered_by", sa.String(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_integration_sync_logs_integration_id", "integration_sync_logs", ["integration_id"])
    op.create_index("ix_integration_sync_logs_created_at", "integration_sync_logs", ["created_at"])

    op.create_table(
        "outbound_orders",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("client_id", sa.String(), nullable=True),
        sa.Column("order_number", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("source", sa.String(), nullable=True),
        sa.Column("integration_id", sa.String(), sa.ForeignKey("client_integrations.id"), nullable=True),
        sa.Column("external_order_id", sa.String(), nullable=True),
        sa.Column("external_platform", sa.String(), nullable=True),
        sa.Column("external_order_number", sa.String(), nullable=True),
        sa.Column("ship_to_name", sa.String(), nullable=True),
        sa.Column("ship_to_company", sa.String(), nullable=True),
        sa.Column("ship_to_address", sa.String(), nullable=True),
        sa.Column("ship_to_address2", sa.String(), nullable=True),
        sa.Column("ship_to_city", sa.String(), nullable=True),
        sa.Column("ship_to_state", sa.String(), nullable=True),
        sa.Column("ship_to_postal_code", sa.String(), nullable=True),
        sa.Column("ship_to_country", sa.String(), nullable=True),
        sa.Column("ship_to_phone", sa.String(), nullable=True),
        sa.Column("ship_to_email", sa.String(), nullable=True),
        sa.Column("shipping_method", sa.String(), nullable=True),
        sa.Column("is_rush", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("carrier", sa.String(), nullable=True),
        sa.Column("tracking_number", sa.String(), nullable=True),
        sa.Column("tracking_url", sa.String(), nullable=True),
        sa.Column("requested_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("shipped_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_outbound_orders_client_id", "outbound_orders", ["client_id"])
    op.create_index("ix_outbound_orders_order_number", "outbound_orders", ["order_number"])
    op.create_index("ix_outbound_orders_integration_id", "outbound_orders", ["integration_id"])
    # Concurrent imports of the same Shopify order collide here
    op.create_index(
        "uq_outbound_external_order",
        "outbound_orders",
        ["external_platform", "external_order_id"],
        unique=True,
    )

    op.create_table(
        "outbound_items",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("order_id", sa.String(), sa.ForeignKey("outbound_orders.id"), nullable=False),
        sa.Column("product_id", sa.String(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("qty_requested", sa.Integer(), nullable=False),
        sa.Column("qty_shipped", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_outbound_items_order_id", "outbound_items", ["order_id"])

    op.create_table(
        "inbound_orders",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("client_id", sa.String(), nullable=True),
        sa.Column("reference", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("expected_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_inbound_orders_client_id", "inbound_orders", ["client_id"])
    op.create_index("ix_inbound_orders_status", "inbound_orders", ["status"])

    op.create_table(
        "inbound_items",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("inbound_order_id", sa.String(), sa.ForeignKey("inbound_orders.id"), nullable=False),
        sa.Column("product_id", sa.String(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("qty_expected", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("qty_received", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_inbound_items_inbound_order_id", "inbound_items", ["inbound_order_id"])
    op.create_index("ix_inbound_items_product_id", "inbound_items", ["product_id"])

    op.create_table(
        "returns",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("original_order_id", sa.String(), sa.ForeignKey("outbound_orders.id"), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "return_items",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("return_id", sa.String(), sa.ForeignKey("returns.id"), nullable=False),
        sa.Column("product_id", sa.String(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("qty_received", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("disposition", sa.String(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_return_items_return_id", "return_items", ["return_id"])

    op.create_table(
        "webhook_events",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("event_id", sa.String(), nullable=False),
        sa.Column("integration_id", sa.String(), sa.ForeignKey("client_integrations.id"), nullable=True),
        sa.Column("shop_domain", sa.String(), nullable=True),
        sa.Column("topic", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("event_id"),
    )
    op.create_index("ix_webhook_events_integration_id", "webhook_events", ["integration_id"])
    op.create_index("ix_webhook_events_shop_domain", "webhook_events", ["shop_domain"])
    op.create_index("ix_webhook_events_topic", "webhook_events", ["topic"])


def downgrade() -> None:
    for table in (
        "webhook_events",
        "return_items",
        "returns",
        "inbound_items",
        "inbound_orders",
        "outbound_items",
        "outbound_orders",
        "integration_sync_logs",
        "product_mappings",
        "inventory",
        "locations",
        "products",
        "client_integrations",
    ):
        op.drop_table(table)
