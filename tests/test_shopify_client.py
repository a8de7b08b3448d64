"""
Shopify Admin API client tests (respx-mocked transport)
"""
import httpx
import pytest
import respx

from wms_sync.services import http_client
from wms_sync.services.errors import ShopifyApiError, ShopifyGraphQLError, SyncSetupError
from wms_sync.services.rate_limit import MemoryCounterStore, RateLimiter
from wms_sync.services.shopify_client import ShopifyClient, normalize_shop_domain, parse_link_next


class SleepRecorder:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class CountingLimiter(RateLimiter):
    def __init__(self):
        super().__init__(store=MemoryCounterStore(), sleep=SleepRecorder())
        self.acquired = []
        self.statuses = []

    async def acquire(self, shop_domain: str) -> None:
        self.acquired.append(shop_domain)
        await super().acquire(shop_domain)

    async def after_response(self, response: httpx.Response) -> None:
        self.statuses.append(response.status_code)
        await super().after_response(response)


class TestHelpers:
    def test_normalize_shop_domain(self):
        assert normalize_shop_domain("My-Shop") == "my-shop.myshopify.com"
        assert normalize_shop_domain("https://my-shop.myshopify.com/") == "my-shop.myshopify.com"
        assert normalize_shop_domain("shop.example.com") == "shop.example.com"

    def test_parse_link_next(self):
        header = (
            '<https://s.myshopify.com/admin/api/2024-01/orders.json?page_info=abc>; rel="previous", '
            '<https://s.myshopify.com/admin/api/2024-01/orders.json?page_info=def>; rel="next"'
        )
        assert parse_link_next(header) == "https://s.myshopify.com/admin/api/2024-01/orders.json?page_info=def"
        assert parse_link_next(None) is None
        assert parse_link_next('<https://x/y>; rel="previous"') is None


class TestShopifyClient:
    """Test REST/GraphQL calls, error surfacing and rate-limit hooks"""

    @pytest.mark.asyncio
    async def test_get_sends_access_token(self, make_client, shopify_base_url):
        async with respx.mock(assert_all_called=True) as router:
            route = router.get(f"{shopify_base_url}/shop.json").mock(
                return_value=httpx.Response(200, json={"shop": {"name": "Test"}})
            )
            async with httpx.AsyncClient(transport=httpx.MockTransport(router.handler)) as session:
                data = await make_client(session).get("/shop.json")

        assert data == {"shop": {"name": "Test"}}
        assert route.calls.last.request.headers["X-Shopify-Access-Token"] == "shpat_test_token"

    @pytest.mark.asyncio
    async def test_non_2xx_raises_with_status_and_body(self, make_client, shopify_base_url):
        async with respx.mock() as router:
            router.get(f"{shopify_base_url}/locations/1.json").mock(
                return_value=httpx.Response(404, text='{"errors":"Not Found"}')
            )
            async with httpx.AsyncClient(transport=httpx.MockTransport(router.handler)) as session:
                with pytest.raises(ShopifyApiError) as exc_info:
                    await make_client(session).get("/locations/1.json")

        assert exc_info.value.status == 404
        assert "Not Found" in exc_info.value.body
        assert str(exc_info.value).startswith("Shopify API Error 404")

    @pytest.mark.asyncio
    async def test_429_waits_retry_after_before_raising(self, make_client, shopify_base_url):
        sleeper = SleepRecorder()
        limiter = RateLimiter(store=MemoryCounterStore(), sleep=sleeper)
        async with respx.mock() as router:
            router.post(f"{shopify_base_url}/inventory_levels/set.json").mock(
                return_value=httpx.Response(429, headers={"Retry-After": "3"}, text="Exceeded 2 calls per second")
            )
            async with httpx.AsyncClient(transport=httpx.MockTransport(router.handler)) as session:
                client = make_client(session, rate_limiter=limiter)
                with pytest.raises(ShopifyApiError) as exc_info:
                    await client.post("/inventory_levels/set.json", {"available": 1})

        assert exc_info.value.status == 429
        assert sum(sleeper.calls) >= 3

    @pytest.mark.asyncio
    async def test_get_retry_draws_from_rate_limiter_each_attempt(self, make_client, shopify_base_url, monkeypatch):
        monkeypatch.setattr(http_client, "RETRY_BACKOFF_BASE", 0)
        limiter = CountingLimiter()
        async with respx.mock() as router:
            route = router.get(f"{shopify_base_url}/shop.json").mock(side_effect=[
                httpx.Response(503, headers={"X-Shopify-Shop-Api-Call-Limit": "10/40"}),
                httpx.Response(200, json={"shop": {"id": 1}}, headers={"X-Shopify-Shop-Api-Call-Limit": "11/40"}),
            ])
            async with httpx.AsyncClient(transport=httpx.MockTransport(router.handler)) as session:
                data = await make_client(session, rate_limiter=limiter).get("/shop.json")

        assert data == {"shop": {"id": 1}}
        assert route.call_count == 2
        assert limiter.acquired == ["test-shop.myshopify.com", "test-shop.myshopify.com"]
        assert limiter.statuses == [503, 200]

    @pytest.mark.asyncio
    async def test_writes_are_not_retried(self, make_client, shopify_base_url):
        async with respx.mock() as router:
            route = router.put(f"{shopify_base_url}/variants/1.json").mock(return_value=httpx.Response(503))
            async with httpx.AsyncClient(transport=httpx.MockTransport(router.handler)) as session:
                with pytest.raises(ShopifyApiError):
                    await make_client(session).put("/variants/1.json", {"variant": {"id": 1}})

        assert route.call_count == 1

    @pytest.mark.asyncio
    async def test_graphql_returns_data(self, make_client, shopify_base_url):
        async with respx.mock() as router:
            router.post(f"{shopify_base_url}/graphql.json").mock(
                return_value=httpx.Response(200, json={"data": {"shop": {"id": "gid://shopify/Shop/1"}}})
            )
            async with httpx.AsyncClient(transport=httpx.MockTransport(router.handler)) as session:
                data = await make_client(session).graphql("{ shop { id } }")

        assert data == {"shop": {"id": "gid://shopify/Shop/1"}}

    @pytest.mark.asyncio
    async def test_graphql_errors_raise(self, make_client, shopify_base_url):
        async with respx.mock() as router:
            router.post(f"{shopify_base_url}/graphql.json").mock(
                return_value=httpx.Response(200, json={"errors": [{"message": "Throttled"}]})
            )
            async with httpx.AsyncClient(transport=httpx.MockTransport(router.handler)) as session:
                with pytest.raises(ShopifyGraphQLError) as exc_info:
                    await make_client(session).graphql("{ shop { id } }")

        assert "Throttled" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_get_all_follows_link_cursor(self, make_client, shopify_base_url):
        next_url = f"{shopify_base_url}/orders.json?page_info=page2"
        async with respx.mock() as router:
            router.get(next_url).mock(return_value=httpx.Response(200, json={"orders": [{"id": 2}]}))
            router.get(f"{shopify_base_url}/orders.json").mock(
                return_value=httpx.Response(200, json={"orders": [{"id": 1}]}, headers={"Link": f'<{next_url}>; rel="next"'})
            )
            async with httpx.AsyncClient(transport=httpx.MockTransport(router.handler)) as session:
                orders = await make_client(session).get_all("/orders.json", "orders", params={"status": "open"})

        assert [o["id"] for o in orders] == [1, 2]

    def test_for_integration_requires_credentials(self, make_integration):
        integration = make_integration(access_token=None)
        with pytest.raises(SyncSetupError):
            ShopifyClient.for_integration(integration)

    def test_for_integration_decrypts_token(self, integration):
        client = ShopifyClient.for_integration(integration)
        assert client.access_token == "shpat_test_token"
        assert client.shop_domain == "test-shop.myshopify.com"
