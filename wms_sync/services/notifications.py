"""
Operator notifications over SMTP. Optional: skipped when SMTP_HOST or OPS_ALERT_EMAIL is unset.
Always sent through the side-effect queue, never inline with a warehouse operation.
"""
import asyncio
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from wms_sync.config import settings

logger = logging.getLogger(__name__)


def send_email(to_email: str, subject: str, body: str) -> bool:
    """
    Send a plain-text email. Returns True if sent, False if skipped.
    Raises on SMTP errors so the side-effect queue records the failure.
    """
    host = (settings.SMTP_HOST or "").strip()
    if not host or not to_email:
        return False
    port = settings.SMTP_PORT or 587
    user = (settings.SMTP_USER or "").strip()
    password = (settings.SMTP_PASSWORD or "").strip()
    from_addr = (settings.EMAIL_FROM or "").strip()

    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = from_addr
    msg["To"] = to_email
    msg.attach(MIMEText(body, "plain"))

    with smtplib.SMTP(host, port, timeout=settings.SMTP_TIMEOUT_SECONDS) as server:
        if settings.SMTP_USE_TLS:
            server.starttls()
        if user and password:
            server.login(user, password)
        server.sendmail(from_addr, [to_email], msg.as_string())
    logger.info("Email %r sent to %s", subject, to_email)
    return True


def format_new_order_email(order_number: str, shop_domain: str, item_count: int, unmapped: list[str], is_rush: bool) -> tuple[str, str]:
    subject = f"{'[RUSH] ' if is_rush else ''}New Shopify order {order_number}"
    lines = [
        f"Order {order_number} was imported from {shop_domain}.",
        f"Line items: {item_count}",
    ]
    if unmapped:
        lines.append("")
        lines.append(f"{len(unmapped)} item(s) could not be mapped and need attention:")
        lines.extend(f"  - {u}" for u in unmapped)
    return subject, "\n".join(lines) + "\n"


async def notify_new_order(
    order_number: str,
    shop_domain: str,
    item_count: int,
    unmapped: list[str],
    is_rush: bool,
    to_email: Optional[str] = None,
) -> bool:
    to_email = to_email or settings.OPS_ALERT_EMAIL
    subject, body = format_new_order_email(order_number, shop_domain, item_count, unmapped, is_rush)
    return await asyncio.to_thread(send_email, to_email, subject, body)


async def notify_sync_failure(integration_id: str, shop_domain: str, message: str, to_email: Optional[str] = None) -> bool:
    to_email = to_email or settings.OPS_ALERT_EMAIL
    subject = f"Shopify sync failed for {shop_domain}"
    body = f"Integration {integration_id} ({shop_domain}) reported an error:\n\n{message}\n"
    return await asyncio.to_thread(send_email, to_email, subject, body)
