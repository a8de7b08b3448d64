"""
Central API route registration. All HTTP controllers are mounted here with /api prefix.
"""
import logging
from fastapi import FastAPI

from wms_sync.http.controllers import (
    cron,
    integrations,
    webhooks,
    workers,
)

logger = logging.getLogger(__name__)


def register_routes(app: FastAPI, settings) -> None:
    """Register all API routers. Call from main.py after creating the FastAPI app."""
    prefix = getattr(settings, "API_PREFIX", "/api")
    app.include_router(integrations.router, prefix=f"{prefix}/integrations", tags=["integrations"])
    app.include_router(webhooks.router, prefix=f"{prefix}/webhooks", tags=["webhooks"])
    app.include_router(cron.router, prefix=f"{prefix}/cron", tags=["cron"])
    app.include_router(workers.router, prefix=f"{prefix}/workers", tags=["workers"])
    logger.info("Registered API routes under %s", prefix)
