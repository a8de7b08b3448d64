"""
External cron entry points. Bearer CRON_SECRET required.
"""
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from wms_sync.config import settings
from wms_sync.database import get_db
from wms_sync.services.sync_logger import cleanup_old_sync_logs
from wms_sync.workers.inventory_reconcile_worker import run_scheduled_inventory_sync

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/sync-shopify-inventory")
async def cron_sync_shopify_inventory(request: Request, db: Session = Depends(get_db)):
    """Scheduled full reconciliation for auto-sync integrations"""
    if not settings.CRON_SECRET:
        logger.error("CRON_SECRET not configured")
        return JSONResponse({"error": "Server misconfigured"}, status_code=500)
    if request.headers.get("authorization") != f"Bearer {settings.CRON_SECRET}":
        logger.error("Unauthorized cron request")
        return JSONResponse({"error": "Unauthorized"}, status_code=401)

    try:
        cleanup_old_sync_logs(db)
    except Exception as e:
        db.rollback()
        logger.error("Sync log cleanup failed: %s", e)

    return await run_scheduled_inventory_sync(db)
