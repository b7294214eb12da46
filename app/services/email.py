"""
Async email sender for admin reports, using aiosmtplib with STARTTLS.

Connection settings come from Settings (EMAIL_HOST, EMAIL_PORT,
EMAIL_USERNAME, EMAIL_PASSWORD, EMAIL_FROM). EMAIL_TO may hold a
comma-separated list. If EMAIL_HOST is unset or REPORT_EMAILS_ENABLED is off,
send_email() logs and returns without raising.
"""
import logging
from email.mime.text import MIMEText
from typing import Optional

import aiosmtplib

from app.core.config import settings

logger = logging.getLogger(__name__)


def _recipients(to: Optional[str]) -> list[str]:
    raw = to if to is not None else settings.EMAIL_TO
    return [addr.strip() for addr in raw.split(",") if addr.strip()]


async def send_email(subject: str, body: str, to: Optional[str] = None) -> bool:
    """Send a plain-text email. Returns True if the SMTP send succeeded."""
    if not settings.REPORT_EMAILS_ENABLED:
        logger.info("email: report emails disabled, skipping '%s'", subject)
        return False
    if not settings.EMAIL_HOST:
        logger.warning("email: EMAIL_HOST not configured, skipping send")
        return False

    recipients = _recipients(to)
    if not recipients:
        logger.warning("email: no recipients configured for '%s'", subject)
        return False

    msg = MIMEText(body, "plain")
    msg["Subject"] = subject
    msg["From"] = settings.EMAIL_FROM
    msg["To"] = ", ".join(recipients)

    try:
        await aiosmtplib.send(
            msg,
            hostname=settings.EMAIL_HOST,
            port=settings.EMAIL_PORT,
            username=settings.EMAIL_USERNAME or None,
            password=settings.EMAIL_PASSWORD or None,
            start_tls=True,
        )
    except Exception as exc:
        logger.exception("email: failed to send '%s': %s", subject, exc)
        return False

    logger.info("email: sent '%s' to %s", subject, msg["To"])
    return True
