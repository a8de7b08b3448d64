"""
Background worker status and side-effect retry routes
"""
import logging
from fastapi import APIRouter

from wms_sync.services.task_queue import side_effects
from wms_sync.workers.scheduler import get_workers_status

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("")
async def list_workers():
    """Worker schedule plus queued/failed side effects"""
    return get_workers_status()


@router.post("/side-effects/retry")
async def retry_side_effects():
    """Re-queue failed side effects (syncs, notifications)"""
    queued = side_effects.retry_failed()
    logger.info("Manual retry of %s failed side effects", queued)
    return {"queued": queued}
