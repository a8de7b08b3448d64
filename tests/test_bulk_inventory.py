"""
Batch inventory updater tests: GraphQL chunking and per-item REST fallback
"""
import json

import httpx
import pytest
import respx

from wms_sync.services.bulk_inventory import (
    BATCH_SIZE,
    InventoryUpdate,
    batch_update_inventory,
    inventory_item_gid,
)


def _updates(n: int) -> list[InventoryUpdate]:
    return [InventoryUpdate(str(1000 + i), "555", i) for i in range(n)]


def _graphql_ok() -> httpx.Response:
    return httpx.Response(200, json={
        "data": {"inventorySetQuantities": {"inventoryAdjustmentGroup": {"id": "gid://shopify/InventoryAdjustmentGroup/1"}, "userErrors": []}}
    })


class TestBatchUpdateInventory:
    """Test batch partitioning and fallback"""

    @pytest.mark.asyncio
    async def test_empty_updates_make_no_calls(self, make_client):
        async with respx.mock(assert_all_called=False) as router:
            async with httpx.AsyncClient(transport=httpx.MockTransport(router.handler)) as session:
                result = await batch_update_inventory(make_client(session), [])

        assert result.updated == 0
        assert result.failed == 0

    @pytest.mark.asyncio
    async def test_issues_one_graphql_call_per_chunk(self, make_client, shopify_base_url):
        async with respx.mock() as router:
            route = router.post(f"{shopify_base_url}/graphql.json").mock(side_effect=lambda request: _graphql_ok())
            async with httpx.AsyncClient(transport=httpx.MockTransport(router.handler)) as session:
                result = await batch_update_inventory(make_client(session), _updates(250))

        assert route.call_count == 3  # ceil(250 / 100)
        assert result.updated == 250
        assert result.failed == 0
        sizes = [len(json.loads(c.request.content)["variables"]["input"]["quantities"]) for c in route.calls]
        assert sizes == [BATCH_SIZE, BATCH_SIZE, 50]

    @pytest.mark.asyncio
    async def test_mutation_sets_absolute_available_quantities(self, make_client, shopify_base_url):
        async with respx.mock() as router:
            route = router.post(f"{shopify_base_url}/graphql.json").mock(return_value=_graphql_ok())
            async with httpx.AsyncClient(transport=httpx.MockTransport(router.handler)) as session:
                await batch_update_inventory(make_client(session), [InventoryUpdate("42", "555", 7)])

        body = json.loads(route.calls.last.request.content)
        payload = body["variables"]["input"]
        assert "inventorySetQuantities" in body["query"]
        assert payload["name"] == "available"
        assert payload["reason"] == "correction"
        assert payload["quantities"] == [{
            "inventoryItemId": inventory_item_gid("42"),
            "locationId": "gid://shopify/Location/555",
            "quantity": 7,
        }]

    @pytest.mark.asyncio
    async def test_user_errors_fall_back_to_rest_for_that_chunk_only(self, make_client, shopify_base_url):
        responses = iter([
            httpx.Response(200, json={
                "data": {"inventorySetQuantities": {"inventoryAdjustmentGroup": None, "userErrors": [{"field": ["input"], "message": "Invalid id"}]}}
            }),
            _graphql_ok(),
        ])
        async with respx.mock() as router:
            gql = router.post(f"{shopify_base_url}/graphql.json").mock(side_effect=lambda request: next(responses))
            rest = router.post(f"{shopify_base_url}/inventory_levels/set.json").mock(
                return_value=httpx.Response(200, json={"inventory_level": {}})
            )
            async with httpx.AsyncClient(transport=httpx.MockTransport(router.handler)) as session:
                result = await batch_update_inventory(make_client(session), _updates(150))

        assert gql.call_count == 2
        assert rest.call_count == BATCH_SIZE
        assert result.updated == 150
        assert result.failed == 0
        first = json.loads(rest.calls[0].request.content)
        assert first == {"location_id": 555, "inventory_item_id": 1000, "available": 0}

    @pytest.mark.asyncio
    async def test_graphql_exception_falls_back_and_collects_item_errors(self, make_client, shopify_base_url):
        def rest_response(request):
            body = json.loads(request.content)
            if body["inventory_item_id"] == 1001:
                return httpx.Response(422, json={"errors": "Inventory item does not exist"})
            return httpx.Response(200, json={"inventory_level": {}})

        async with respx.mock() as router:
            router.post(f"{shopify_base_url}/graphql.json").mock(return_value=httpx.Response(500, text="boom"))
            router.post(f"{shopify_base_url}/inventory_levels/set.json").mock(side_effect=rest_response)
            async with httpx.AsyncClient(transport=httpx.MockTransport(router.handler)) as session:
                result = await batch_update_inventory(make_client(session), _updates(3))

        assert result.updated == 2
        assert result.failed == 1
        assert result.errors[0]["inventoryItemId"] == "1001"
        assert "422" in result.errors[0]["error"]
        assert result.updated_item_ids == ["1000", "1002"]
