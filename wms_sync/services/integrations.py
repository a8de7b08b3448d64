"""
Integration lookups and observability-field updates shared by the sync engines.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from wms_sync.config import settings
from wms_sync.models import Integration, IntegrationStatus
from wms_sync.services.credentials import has_credentials
from wms_sync.services.errors import IntegrationSettingsError, SyncSetupError
from wms_sync.services.integration_settings import IntegrationSettings, load_settings

logger = logging.getLogger(__name__)

MAX_ERROR_MESSAGE_LENGTH = 1000


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Stored timestamps may come back naive (SQLite); treat those as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def get_integration(db: Session, integration_id: str) -> Optional[Integration]:
    return db.query(Integration).filter(Integration.id == integration_id).first()


def require_active_integration(db: Session, integration_id: str) -> tuple[Integration, IntegrationSettings]:
    """
    Load an integration that can be synced right now.
    Raises SyncSetupError if it is missing, not active, uncredentialed or has invalid settings.
    """
    integration = get_integration(db, integration_id)
    if integration is None:
        raise SyncSetupError("Integration not found")
    if integration.status != IntegrationStatus.ACTIVE.value:
        raise SyncSetupError("Integration is not active")
    if not has_credentials(integration):
        raise SyncSetupError("Integration not properly configured")
    try:
        cfg = load_settings(integration)
    except IntegrationSettingsError as e:
        raise SyncSetupError(str(e)) from e
    return integration, cfg


def record_integration_error(db: Session, integration: Integration, message: str) -> None:
    """Persist last_error_* onto the integration. Never raises."""
    try:
        integration.last_error_at = utcnow()
        integration.last_error_message = (message or "")[:MAX_ERROR_MESSAGE_LENGTH]
        db.add(integration)
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error("Could not record error on integration %s: %s", integration.id, e)


def disconnect_integration(db: Session, integration: Integration) -> Integration:
    """Soft disconnect. Rows referencing the integration stay intact."""
    integration.status = IntegrationStatus.INACTIVE.value
    if settings.CLEAR_TOKEN_ON_DISCONNECT:
        integration.access_token = None
    db.add(integration)
    db.commit()
    logger.info("Disconnected integration %s (%s)", integration.id, integration.shop_domain)
    return integration
