"""
Order import engine tests
"""

from datetime import datetime, timezone

import httpx
import pytest
import respx

from wms_sync.models import IntegrationSyncLog, OutboundItem, OutboundOrder
from wms_sync.services.errors import SyncSetupError
from wms_sync.services.order_import import (
    build_order_notes,
    build_order_number,
    is_rush_order,
    process_shopify_order,
    shipping_method_for,
    sync_shopify_orders,
)
from wms_sync.services.task_queue import side_effects


def shopify_order(order_id=5001, name="#1001", tags="", shipping_title="Standard", line_items=None, **extra):
    order = {
        "id": order_id,
        "name": name,
        "email": "buyer@example.com",
        "tags": tags,
        "note": None,
        "shipping_lines": [{"title": shipping_title}],
        "shipping_address": {
            "first_name": "Ada",
            "last_name": "Lovelace",
            "company": None,
            "address1": "1 Analytical Way",
            "address2": "",
            "city": "London",
            "province_code": "LDN",
            "zip": "N1 9GU",
            "country_code": "GB",
            "phone": "+44 20 0000 0000",
        },
        "line_items": line_items if line_items is not None else [
            {"variant_id": 8001, "sku": "SKU-1", "name": "Mapped Tee", "price": "19.99",
             "requires_shipping": True, "fulfillable_quantity": 2},
        ],
    }
    order.update(extra)
    return order


class TestOrderHelpers:
    def test_build_order_number(self):
        assert build_order_number("#1001") == "SH-1001"
        assert build_order_number("# 1003") == "SH-1003"
        assert build_order_number("##42") == "SH-42"

    @pytest.mark.parametrize("tags,method,expected", [
        ("RUSH", "Standard", True),
        ("", "Overnight Express", True),
        ("vip, gift", "Priority Mail", True),
        ("", "Standard", False),
        (None, "", False),
    ])
    def test_is_rush_order(self, tags, method, expected):
        assert is_rush_order(tags, method) is expected

    def test_shipping_method_defaults_to_standard(self):
        assert shipping_method_for({"shipping_lines": []}) == "Standard"
        assert shipping_method_for({"shipping_lines": [{"title": "Express"}]}) == "Express"

    def test_build_order_notes(self):
        assert build_order_notes(None, []) is None
        notes = build_order_notes("Leave at door", ["ABC: Hat", "No SKU: Gift card"])
        assert notes.splitlines()[0] == "Customer note: Leave at door"
        assert "2 item(s) could not be mapped: ABC: Hat, No SKU: Gift card" in notes


class TestProcessShopifyOrder:
    """Test single-order import"""

    def test_creates_pending_order_with_address_and_items(self, db_session, integration, make_product, make_mapping):
        product = make_product()
        make_mapping(integration, product)

        outcome = process_shopify_order(db_session, shopify_order(), integration, notify=False)

        assert outcome.created
        order = db_session.query(OutboundOrder).one()
        assert order.order_number == "SH-1001"
        assert order.status == "pending"
        assert order.external_order_id == "5001"
        assert order.external_platform == "shopify"
        assert order.external_order_number == "#1001"
        assert order.integration_id == integration.id
        assert order.ship_to_name == "Ada Lovelace"
        assert order.ship_to_postal_code == "N1 9GU"
        assert order.ship_to_email == "buyer@example.com"
        assert order.ship_to_address2 is None
        assert order.shipping_method == "Standard"
        assert order.is_rush is False
        item = db_session.query(OutboundItem).one()
        assert item.product_id == product.id
        assert item.qty_requested == 2

    def test_importing_twice_creates_one_order(self, db_session, integration, make_product, make_mapping):
        make_mapping(integration, make_product())

        first = process_shopify_order(db_session, shopify_order(), integration, notify=False)
        second = process_shopify_order(db_session, shopify_order(), integration, notify=False)

        assert first.status == "created"
        assert second.status == "skipped"
        assert second.order_id == first.order_id
        assert db_session.query(OutboundOrder).count() == 1

    def test_unmapped_item_is_excluded_and_noted(self, db_session, integration, make_product, make_mapping):
        make_mapping(integration, make_product())
        order = shopify_order(line_items=[
            {"variant_id": 8001, "sku": "SKU-1", "name": "Mapped Tee", "price": "19.99",
             "requires_shipping": True, "fulfillable_quantity": 1},
            {"variant_id": 9999, "sku": "GHOST-1", "name": "Ghost Hoodie", "price": "49.00",
             "requires_shipping": True, "fulfillable_quantity": 1},
        ])

        outcome = process_shopify_order(db_session, order, integration, notify=False)

        assert outcome.items_created == 1
        assert outcome.unmapped_items == ["GHOST-1: Ghost Hoodie"]
        created = db_session.query(OutboundOrder).one()
        assert db_session.query(OutboundItem).count() == 1
        assert "1 item(s) could not be mapped" in created.notes
        assert "GHOST-1: Ghost Hoodie" in created.notes

    def test_falls_back_to_case_insensitive_sku(self, db_session, integration, make_product, make_mapping):
        product = make_product(sku="SKU-1")
        make_mapping(integration, product, external_variant_id=None, external_sku="sku-1")
        order = shopify_order(line_items=[
            {"variant_id": 123, "sku": "SKU-1 ", "name": "Tee", "price": "10.00",
             "requires_shipping": True, "fulfillable_quantity": 3},
        ])

        outcome = process_shopify_order(db_session, order, integration, notify=False)

        assert outcome.items_created == 1
        assert db_session.query(OutboundItem).one().product_id == product.id

    def test_skips_non_shippable_and_fulfilled_lines(self, db_session, integration, make_product, make_mapping):
        make_mapping(integration, make_product())
        order = shopify_order(line_items=[
            {"variant_id": 8001, "sku": "SKU-1", "name": "Tee", "requires_shipping": True, "fulfillable_quantity": 0},
            {"variant_id": None, "sku": "", "name": "Gift card", "requires_shipping": False, "fulfillable_quantity": 1},
        ])

        outcome = process_shopify_order(db_session, order, integration, notify=False)

        assert outcome.created
        assert outcome.items_created == 0
        assert outcome.unmapped_items == []

    @pytest.mark.parametrize("tags,shipping_title,expected", [
        ("RUSH", "Standard", True),
        ("", "Overnight Express", True),
        ("", "Standard", False),
    ])
    def test_rush_classification(self, db_session, integration, tags, shipping_title, expected):
        process_shopify_order(db_session, shopify_order(tags=tags, shipping_title=shipping_title), integration, notify=False)
        assert db_session.query(OutboundOrder).one().is_rush is expected

    @pytest.mark.asyncio
    async def test_new_order_notification_is_queued(self, db_session, integration, monkeypatch):
        sent = []

        async def fake_notify(order_number, shop_domain, item_count, unmapped, is_rush):
            sent.append((order_number, shop_domain, is_rush))
            return True

        monkeypatch.setattr("wms_sync.services.order_import.notify_new_order", fake_notify)

        process_shopify_order(db_session, shopify_order(tags="rush"), integration)
        await side_effects.drain()

        assert sent == [("SH-1001", "test-shop.myshopify.com", True)]

    def test_notify_false_queues_nothing(self, db_session, integration, monkeypatch):
        names = []
        monkeypatch.setattr(side_effects, "enqueue", lambda name, factory: names.append(name) or True)

        outcome = process_shopify_order(db_session, shopify_order(), integration, notify=False)

        assert outcome.created
        assert names == []


class TestSyncShopifyOrders:
    """Test pulling open orders"""

    @pytest.mark.asyncio
    async def test_imports_new_and_skips_existing(
        self, db_session, integration, make_product, make_mapping, make_client, shopify_base_url,
    ):
        make_mapping(integration, make_product())
        process_shopify_order(db_session, shopify_order(order_id=5001, name="#1001"), integration, notify=False)

        async with respx.mock() as router:
            route = router.get(f"{shopify_base_url}/orders.json").mock(return_value=httpx.Response(200, json={"orders": [
                shopify_order(order_id=5001, name="#1001"),
                shopify_order(order_id=5002, name="#1002"),
            ]}))
            async with httpx.AsyncClient(transport=httpx.MockTransport(router.handler)) as session:
                result = await sync_shopify_orders(db_session, integration.id, client=make_client(session))

        assert result.as_dict() == {"imported": 1, "skipped": 1, "failed": 0}
        params = route.calls.last.request.url.params
        assert params["status"] == "open"
        assert params["fulfillment_status"] == "unfulfilled"
        assert db_session.query(OutboundOrder).count() == 2

        log = db_session.query(IntegrationSyncLog).one()
        assert log.sync_type == "orders"
        assert log.direction == "inbound"
        assert log.items_processed == 1
        assert log.extra == {"skipped": 1}

    @pytest.mark.asyncio
    async def test_missing_credentials_raise(self, db_session, make_integration):
        integration = make_integration(access_token=None)
        with pytest.raises(SyncSetupError):
            await sync_shopify_orders(db_session, integration.id)

    @pytest.mark.asyncio
    async def test_since_is_sent_as_created_at_min(
        self, db_session, integration, make_client, shopify_base_url,
    ):
        since = datetime(2026, 1, 1, tzinfo=timezone.utc)
        async with respx.mock() as router:
            route = router.get(f"{shopify_base_url}/orders.json").mock(return_value=httpx.Response(200, json={"orders": []}))
            async with httpx.AsyncClient(transport=httpx.MockTransport(router.handler)) as session:
                await sync_shopify_orders(db_session, integration.id, since=since, client=make_client(session))

        assert route.calls.last.request.url.params["created_at_min"] == since.isoformat()
