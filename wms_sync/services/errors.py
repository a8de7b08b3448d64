"""
Exceptions raised by the Shopify sync services.
"""
from typing import Any, Optional


class SyncError(Exception):
    """Base class for sync failures."""


class SyncSetupError(SyncError):
    """Integration cannot be synced at all (missing, inactive, no credentials, no location)."""


class IntegrationSettingsError(SyncError):
    """Stored integration settings failed validation."""


class ShopifyApiError(SyncError):
    """Non-2xx response from the Shopify Admin API."""

    def __init__(self, status: int, body: str):
        self.status = status
        self.body = body
        super().__init__(f"Shopify API Error {status}: {body}")


class ShopifyGraphQLError(SyncError):
    """GraphQL response carried a top-level errors array."""

    def __init__(self, errors: list[Any], message: Optional[str] = None):
        self.errors = errors
        if message is None:
            parts = [str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors]
            message = "Shopify GraphQL Error: " + "; ".join(parts)
        super().__init__(message)
