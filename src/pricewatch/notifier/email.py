"""Email channel over SMTP."""

from __future__ import annotations

import asyncio
import logging
import smtplib
from email.mime.text import MIMEText

from ..config import settings
from .base import BaseChannel, PriceDropAlert

logger = logging.getLogger(__name__)


class EmailChannel(BaseChannel):
    name = "email"

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        username: str | None = None,
        password: str | None = None,
        sender: str | None = None,
    ) -> None:
        self.host = host or settings.smtp_host
        self.port = port or settings.smtp_port
        self.username = username or settings.smtp_username
        self.password = password or settings.smtp_password
        self.sender = sender or settings.smtp_from

    async def deliver(self, alert: PriceDropAlert, config: dict) -> bool:
        to = config.get("to") or config.get("email")
        if not (to and self.host and self.sender):
            logger.debug("Email channel not configured (to=%s, host=%s); skipping", to, self.host)
            return False
        subject = f"Price drop: {alert.title[:80]} ({alert.drop_percent:.1f}% off)"
        # smtplib blocks; keep it off the event loop.
        return await asyncio.to_thread(self._send, to, subject, self.format_message(alert))

    def _send(self, to: str, subject: str, body: str) -> bool:
        msg = MIMEText(body, "plain", "utf-8")
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = to
        try:
            with smtplib.SMTP(self.host, self.port, timeout=10) as server:
                server.starttls()
                if self.username:
                    server.login(self.username, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.warning("Failed to send alert email to %s: %s", to, e)
            return False
        logger.info("Alert email sent to %s", to)
        return True
