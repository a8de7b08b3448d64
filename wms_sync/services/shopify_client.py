"""
Shopify Admin API client (REST + GraphQL) bound to one shop.
Every call draws from the shared rate limiter and reacts to Shopify's throttle headers.
"""
import json
import logging
import re
from typing import Any, Optional

import httpx

from wms_sync.config import settings
from wms_sync.models import Integration
from wms_sync.services.credentials import get_integration_credentials
from wms_sync.services.errors import ShopifyApiError, ShopifyGraphQLError
from wms_sync.services.http_client import request_with_retry
from wms_sync.services.rate_limit import RateLimiter, get_rate_limiter

logger = logging.getLogger(__name__)


def parse_link_next(link_header: Optional[str]) -> Optional[str]:
    """Parse Link header; return URL for rel=next if present. Shopify uses cursor pagination."""
    if not link_header:
        return None
    # Format: <url>; rel=next, <url>; rel=previous
    for part in link_header.split(","):
        part = part.strip()
        if 'rel="next"' in part.lower() or "rel=next" in part.lower():
            match = re.search(r"<([^>]+)>", part)
            if match:
                return match.group(1).strip()
    return None


def normalize_shop_domain(shop_domain: str) -> str:
    shop = shop_domain.lower().strip()
    if shop.startswith("https://"):
        shop = shop[len("https://"):]
    shop = shop.rstrip("/")
    if not shop.endswith(".myshopify.com") and "." not in shop:
        shop = f"{shop}.myshopify.com"
    return shop


def _log_shopify_response(method: str, url: str, status: int, body_preview: str = "") -> None:
    """Log every Shopify API call. No sensitive data."""
    if status >= 400:
        logger.warning("Shopify API %s %s -> %s %s", method, url, status, body_preview[:200] if body_preview else "")
    else:
        logger.debug("Shopify API %s %s -> %s", method, url, status)


class ShopifyClient:
    """Thin wrapper over the Admin API. No idempotency is enforced for writes."""

    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        api_version: Optional[str] = None,
        session: Optional[httpx.AsyncClient] = None,
        rate_limiter: Optional[RateLimiter] = None,
        timeout: Optional[float] = None,
    ):
        self.shop_domain = normalize_shop_domain(shop_domain)
        self.access_token = access_token
        self.api_version = api_version or settings.SHOPIFY_API_VERSION
        self.session = session
        self.rate_limiter = rate_limiter or get_rate_limiter()
        self.timeout = timeout or settings.SHOPIFY_HTTP_TIMEOUT

    @classmethod
    def for_integration(cls, integration: Integration, **kwargs: Any) -> "ShopifyClient":
        """Build a client from a stored integration, decrypting its token."""
        shop, token = get_integration_credentials(integration)
        return cls(shop, token, **kwargs)

    @property
    def base_url(self) -> str:
        return f"https://{self.shop_domain}/admin/api/{self.api_version}"

    def _headers(self) -> dict:
        return {
            "X-Shopify-Access-Token": self.access_token,
            "Content-Type": "application/json",
        }

    def _url(self, path: str) -> str:
        if path.startswith("https://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    async def _send(
        self,
        method: str,
        path: str,
        body: Optional[dict] = None,
        params: Optional[dict] = None,
    ) -> httpx.Response:
        url = self._url(path)

        async def acquire() -> None:
            await self.rate_limiter.acquire(self.shop_domain)

        resp = await request_with_retry(
            method,
            url,
            session=self.session,
            timeout=self.timeout,
            max_retries=2 if method == "GET" else 0,
            before_attempt=acquire,
            after_attempt=self.rate_limiter.after_response,
            headers=self._headers(),
            params=params,
            json=body,
        )
        _log_shopify_response(method, url, resp.status_code, resp.text if resp.status_code >= 400 else "")
        if not resp.is_success:
            raise ShopifyApiError(resp.status_code, resp.text)
        return resp

    @staticmethod
    def _json(resp: httpx.Response) -> dict:
        if not resp.content:
            return {}
        try:
            return resp.json()
        except json.JSONDecodeError:
            return {}

    async def get(self, path: str, params: Optional[dict] = None) -> dict:
        return self._json(await self._send("GET", path, params=params))

    async def post(self, path: str, body: Optional[dict] = None) -> dict:
        return self._json(await self._send("POST", path, body=body or {}))

    async def put(self, path: str, body: Optional[dict] = None) -> dict:
        return self._json(await self._send("PUT", path, body=body or {}))

    async def delete(self, path: str) -> None:
        await self._send("DELETE", path)

    async def get_all(self, path: str, key: str, params: Optional[dict] = None, max_pages: int = 50) -> list[dict]:
        """
        GET a list endpoint and follow Link rel=next cursors.
        Returns the concatenated `key` arrays (e.g. "orders", "products").
        """
        results: list[dict] = []
        next_path: Optional[str] = path
        next_params = params
        pages = 0
        while next_path and pages < max_pages:
            resp = await self._send("GET", next_path, params=next_params)
            results.extend(self._json(resp).get(key) or [])
            next_path = parse_link_next(resp.headers.get("Link") or resp.headers.get("link"))
            # page_info cursors carry the filters already
            next_params = None
            pages += 1
        if next_path:
            logger.warning("Stopped paginating %s after %s pages", path, max_pages)
        return results

    async def graphql(self, query: str, variables: Optional[dict] = None) -> dict:
        """POST a GraphQL document. Returns the `data` payload; raises on top-level errors."""
        payload = self._json(await self._send("POST", "/graphql.json", body={"query": query, "variables": variables or {}}))
        errors = payload.get("errors")
        if errors:
            if not isinstance(errors, list):
                errors = [errors]
            raise ShopifyGraphQLError(errors)
        return payload.get("data") or {}
