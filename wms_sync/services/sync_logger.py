"""
Append-only sync log. Status is derived from the counts, never passed in.
Logging a sync must never fail the sync it describes.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy.orm import Session

from wms_sync.config import settings
from wms_sync.models import IntegrationSyncLog, SyncStatus

logger = logging.getLogger(__name__)


@dataclass
class SyncLogEntry:
    integration_id: str
    sync_type: str
    direction: str
    items_processed: int
    items_failed: int
    triggered_by: str
    error_details: Optional[list[Any]] = None
    duration_ms: Optional[int] = None
    metadata: Optional[dict[str, Any]] = field(default=None)


def derive_status(items_processed: int, items_failed: int) -> str:
    if items_failed == 0:
        return SyncStatus.SUCCESS.value
    if items_processed == 0:
        return SyncStatus.FAILED.value
    return SyncStatus.PARTIAL.value


def log_sync_result(db: Session, entry: SyncLogEntry) -> Optional[IntegrationSyncLog]:
    """Persist one entry. Returns the row, or None if the write failed (logged)."""
    row = IntegrationSyncLog(
        integration_id=entry.integration_id,
        sync_type=entry.sync_type,
        direction=entry.direction,
        status=derive_status(entry.items_processed, entry.items_failed),
        items_processed=entry.items_processed,
        items_failed=entry.items_failed,
        error_details=entry.error_details or None,
        duration_ms=entry.duration_ms,
        triggered_by=entry.triggered_by,
        extra=entry.metadata,
    )
    try:
        db.add(row)
        db.commit()
        return row
    except Exception as e:
        db.rollback()
        logger.error("Failed to write sync log for integration %s (%s): %s", entry.integration_id, entry.sync_type, e)
        return None


def get_sync_logs(db: Session, integration_id: str, limit: int = 50, sync_type: Optional[str] = None) -> list[IntegrationSyncLog]:
    q = db.query(IntegrationSyncLog).filter(IntegrationSyncLog.integration_id == integration_id)
    if sync_type:
        q = q.filter(IntegrationSyncLog.sync_type == sync_type)
    return q.order_by(IntegrationSyncLog.created_at.desc()).limit(limit).all()


def cleanup_old_sync_logs(db: Session, days: Optional[int] = None) -> int:
    """Delete entries older than `days` (default SYNC_LOG_RETENTION_DAYS). Returns rows deleted."""
    days = days if days is not None else settings.SYNC_LOG_RETENTION_DAYS
    cutoff = datetime.now(timezone.utc) - timedelta(days=days)
    deleted = (
        db.query(IntegrationSyncLog)
        .filter(IntegrationSyncLog.created_at < cutoff)
        .delete(synchronize_session=False)
    )
    db.commit()
    if deleted:
        logger.info("Cleaned up %s sync log entries older than %s days", deleted, days)
    return deleted
