"""
Shopify webhook receiver. Public (no auth); HMAC verified against SHOPIFY_CLIENT_SECRET.
"""
import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from wms_sync.config import settings
from wms_sync.database import get_db
from wms_sync.services.integrations import get_integration
from wms_sync.services.webhook_handler import process_shopify_webhook, verify_webhook_hmac

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/shopify/{integration_id}")
async def shopify_webhook(integration_id: str, request: Request, db: Session = Depends(get_db)):
    """Receive orders/create, orders/updated and orders/cancelled. Always 200 once verified."""
    body = await request.body()
    hmac_header = request.headers.get("X-Shopify-Hmac-Sha256")
    topic = request.headers.get("X-Shopify-Topic")
    shop_domain = request.headers.get("X-Shopify-Shop-Domain")

    if not hmac_header or not settings.SHOPIFY_CLIENT_SECRET:
        logger.error("Missing HMAC header or SHOPIFY_CLIENT_SECRET not configured")
        return PlainTextResponse("Unauthorized", status_code=401)
    if not verify_webhook_hmac(body, hmac_header, settings.SHOPIFY_CLIENT_SECRET):
        logger.error("Invalid webhook signature for integration %s", integration_id)
        return PlainTextResponse("Invalid signature", status_code=401)

    integration = get_integration(db, integration_id)
    if not integration:
        logger.error("Integration not found: %s", integration_id)
        return PlainTextResponse("Integration not found", status_code=404)

    try:
        payload = json.loads(body)
    except json.JSONDecodeError as e:
        logger.error("Invalid JSON webhook payload: %s", e)
        return PlainTextResponse("Invalid payload", status_code=400)
    if not isinstance(payload, dict):
        return PlainTextResponse("Invalid payload", status_code=400)

    result = process_shopify_webhook(db, integration, topic, shop_domain, payload)
    if result.status == "duplicate":
        return PlainTextResponse("Already processed", status_code=200)
    return PlainTextResponse("OK", status_code=200)
