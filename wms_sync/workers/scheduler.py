"""
Worker Scheduler Configuration

Registers and schedules background workers: Shopify inventory reconciliation and
retries of failed side effects.
"""

import logging
import asyncio
import inspect
from datetime import datetime, timedelta, timezone
from typing import Dict, Any

from wms_sync.config import settings
from wms_sync.services.task_queue import side_effects
from wms_sync.workers.inventory_reconcile_worker import run_inventory_reconcile_worker

logger = logging.getLogger(__name__)


async def run_side_effect_retry_worker() -> Dict[str, Any]:
    queued = side_effects.retry_failed()
    return {"success": True, "message": f"Re-queued {queued} failed side effects"}


class WorkerScheduler:
    """Scheduler for running background workers at specified intervals."""

    def __init__(self, tick_seconds: float = 60):
        self.workers = {
            "shopify_inventory_reconcile": {
                "func": run_inventory_reconcile_worker,
                "interval": settings.SCHEDULED_SYNC_INTERVAL_SEC,
                "last_run": None,
                "enabled": True
            },
            "side_effect_retry": {
                "func": run_side_effect_retry_worker,
                "interval": 300,  # 5 minutes
                "last_run": None,
                "enabled": True
            }
        }
        self.tick_seconds = tick_seconds
        self.running = False

    async def run_worker(self, worker_name: str, worker_config: Dict[str, Any]) -> Dict[str, Any]:
        """
        Run a single worker and log results.

        Args:
            worker_name: Name of the worker
            worker_config: Worker configuration

        Returns:
            Worker result
        """
        try:
            logger.info(f"Starting worker: {worker_name}")
            func = worker_config["func"]
            if inspect.iscoroutinefunction(func):
                result = await func()
            else:
                result = await asyncio.get_running_loop().run_in_executor(None, func)

            worker_config["last_run"] = datetime.now(timezone.utc)

            if result.get("success", False):
                logger.info(f"Worker {worker_name} completed: {result.get('message', 'No message')}")
            else:
                logger.error(f"Worker {worker_name} failed: {result.get('message', 'Unknown error')}")

            return result

        except Exception as e:
            worker_config["last_run"] = datetime.now(timezone.utc)
            logger.error(f"Worker {worker_name} crashed: {e}")
            return {
                "success": False,
                "message": f"Worker crashed: {str(e)}",
                "timestamp": datetime.now(timezone.utc).isoformat()
            }

    def due_workers(self, current_time: datetime) -> list[str]:
        due = []
        for worker_name, worker_config in self.workers.items():
            if not worker_config["enabled"]:
                continue
            last_run = worker_config["last_run"]
            if last_run is None or (current_time - last_run).total_seconds() >= worker_config["interval"]:
                due.append(worker_name)
        return due

    async def start_scheduler(self):
        """Start the background worker scheduler."""
        self.running = True
        logger.info("🚀 Worker scheduler started")

        while self.running:
            for worker_name in self.due_workers(datetime.now(timezone.utc)):
                # Marked now so a slow run is not started twice
                self.workers[worker_name]["last_run"] = datetime.now(timezone.utc)
                asyncio.create_task(self.run_worker(worker_name, self.workers[worker_name]))

            await asyncio.sleep(self.tick_seconds)

    def stop_scheduler(self):
        """Stop the background worker scheduler."""
        self.running = False
        logger.info("⏹️ Worker scheduler stopped")

    def get_worker_status(self) -> Dict[str, Any]:
        """Get current status of all workers."""
        status = {}

        for worker_name, worker_config in self.workers.items():
            last_run = worker_config["last_run"]
            next_run = None

            if last_run:
                next_run = last_run + timedelta(seconds=worker_config["interval"])

            status[worker_name] = {
                "enabled": worker_config["enabled"],
                "last_run": last_run.isoformat() if last_run else None,
                "next_run": next_run.isoformat() if next_run else None,
                "interval_seconds": worker_config["interval"],
                "status": "running" if self.running else "stopped"
            }

        status["side_effects"] = side_effects.status()
        return status


# Global scheduler instance
scheduler = WorkerScheduler()


def start_background_workers():
    """Start the background worker scheduler."""
    try:
        asyncio.create_task(scheduler.start_scheduler())
        logger.info("✅ Background workers started successfully")
    except Exception as e:
        logger.error(f"❌ Failed to start background workers: {e}")


def stop_background_workers():
    """Stop the background worker scheduler."""
    scheduler.stop_scheduler()


def get_workers_status() -> Dict[str, Any]:
    """Get status of all background workers."""
    return scheduler.get_worker_status()
