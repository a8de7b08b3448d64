"""
Typed view over the JSON `settings` column of an integration.
Validated on every read; unknown keys are ignored so older rows keep loading.
"""
import logging
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from sqlalchemy.orm import Session

from wms_sync.models import Integration
from wms_sync.services.errors import IntegrationSettingsError

logger = logging.getLogger(__name__)

SETTINGS_SCHEMA_VERSION = 1


class IntegrationSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    schema_version: int = SETTINGS_SCHEMA_VERSION
    inventory_buffer: int = Field(default=0, ge=0)
    auto_sync_inventory: bool = False
    auto_sync_orders: bool = False
    auto_sync_prices: bool = False
    shopify_location_id: Optional[str] = None
    # Internal location to count stock from; None = all locations
    default_location_id: Optional[str] = None
    fulfillment_notify_customer: bool = True
    sync_inventory_interval_minutes: int = Field(default=60, ge=1)

    @field_validator("shopify_location_id", "default_location_id", mode="before")
    @classmethod
    def _coerce_id(cls, v: Any) -> Optional[str]:
        # Shopify ids arrive as ints from the API
        if v is None or v == "":
            return None
        return str(v)


def load_settings(integration: Integration) -> IntegrationSettings:
    """Parse integration.settings. Raises IntegrationSettingsError on invalid values."""
    raw = integration.settings or {}
    if not isinstance(raw, dict):
        raise IntegrationSettingsError(f"Integration {integration.id} settings must be an object")
    try:
        return IntegrationSettings.model_validate(raw)
    except ValidationError as e:
        raise IntegrationSettingsError(f"Invalid settings for integration {integration.id}: {e}") from e


def save_settings(db: Session, integration: Integration, **changes: Any) -> IntegrationSettings:
    """Apply changes, re-validate and write back the full settings object."""
    current = load_settings(integration)
    updated = IntegrationSettings.model_validate({**current.model_dump(), **changes})
    # Preserve keys other tools may have stored alongside ours
    merged = dict(integration.settings or {})
    merged.update(updated.model_dump())
    integration.settings = merged
    db.add(integration)
    db.commit()
    logger.info("Updated settings for integration %s: %s", integration.id, sorted(changes))
    return updated
