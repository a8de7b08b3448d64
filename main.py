"""
WMS Shopify Sync - FastAPI Backend
"""
import logging

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy import text

from routes.api import register_routes
from wms_sync.config import settings
from wms_sync.database import engine, Base
from wms_sync.services.errors import ShopifyApiError, SyncSetupError
from wms_sync.services.event_sync import get_scheduler
from wms_sync.services.task_queue import side_effects
from wms_sync.workers.scheduler import start_background_workers, stop_background_workers

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Create database tables
Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="WMS Shopify Sync API",
    description="Keeps client Shopify stores in sync with warehouse stock and orders",
    version="1.0.0",
    docs_url="/docs" if settings.IS_DEVELOPMENT else None,
    redoc_url="/redoc" if settings.IS_DEVELOPMENT else None,
)

logger.info("🚀 Starting WMS Shopify Sync API")
logger.info(f"📊 Environment: {settings.ENV}")

if not (settings.DATABASE_URL or "").strip():
    logger.warning("⚠️ DATABASE_URL is not set. Database operations will fail.")
if not settings.SHOPIFY_CLIENT_SECRET:
    logger.warning("⚠️ SHOPIFY_CLIENT_SECRET is not set. Shopify webhooks will be rejected.")
if not settings.REDIS_URL:
    logger.warning("⚠️ REDIS_URL is not set. Shopify rate limits are enforced per process only.")


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Validation error: {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "detail": exc.errors(),
            "message": "Validation error: Please check your request format"
        },
    )


@app.exception_handler(SyncSetupError)
async def sync_setup_exception_handler(request: Request, exc: SyncSetupError):
    logger.warning(f"Sync setup error on {request.url.path}: {exc}")
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


@app.exception_handler(ShopifyApiError)
async def shopify_exception_handler(request: Request, exc: ShopifyApiError):
    logger.error(f"Shopify API error on {request.url.path}: {exc}")
    return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Internal server error",
            "message": str(exc) if settings.IS_DEVELOPMENT else "An error occurred"
        },
    )


# Register all API routes (prefix /api)
register_routes(app, settings)


@app.get("/health")
async def health():
    """Health check endpoint. Includes DB connectivity check."""
    db_status = "ok"
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning("Health check DB ping failed: %s", e)
        db_status = "error"
    return {
        "status": "ok" if db_status == "ok" else "degraded",
        "service": "wms-shopify-sync",
        "db": db_status,
        "environment": settings.ENV,
        "side_effects_failed": len(side_effects.failed),
    }


@app.on_event("startup")
async def startup_workers() -> None:
    """Start scheduled Shopify reconciliation and side-effect retries."""
    if settings.ENABLE_BACKGROUND_WORKERS:
        start_background_workers()
    else:
        logger.info("Background workers disabled (ENABLE_BACKGROUND_WORKERS=false)")


@app.on_event("shutdown")
async def shutdown_workers() -> None:
    stop_background_workers()
    # Pending debounce timers are best effort; the next reconciliation covers them
    get_scheduler().cancel_all()
    await side_effects.drain()


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.IS_DEVELOPMENT,
        log_level=settings.LOG_LEVEL.lower()
    )
