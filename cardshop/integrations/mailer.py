from __future__ import annotations

import asyncio
import smtplib
from email.message import EmailMessage

from cardshop.core.config import Settings
from cardshop.core.logging import get_logger

logger = get_logger("notify")


class Mailer:
    """SMTP sender. Disabled (every send returns False) when SMTP_HOST is unset."""

    def __init__(self, settings: Settings):
        self.host = settings.SMTP_HOST
        self.port = settings.SMTP_PORT
        self.username = settings.SMTP_USERNAME
        self.password = settings.SMTP_PASSWORD
        self.sender = settings.SMTP_FROM
        self.use_tls = settings.SMTP_USE_TLS

    @property
    def enabled(self) -> bool:
        return bool(self.host)

    def _send_blocking(self, *, to_email: str, subject: str, body: str) -> None:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = to_email
        msg["Subject"] = subject
        msg.set_content(body)

        with smtplib.SMTP(self.host, self.port, timeout=10) as server:
            if self.use_tls:
                server.starttls()
            if self.username and self.password:
                server.login(self.username, self.password)
            server.send_message(msg)

    async def send(self, *, to_email: str, subject: str, body: str) -> bool:
        if not self.enabled:
            logger.info("smtp not configured; email skipped", extra={"subject": subject})
            return False
        try:
            await asyncio.to_thread(self._send_blocking, to_email=to_email, subject=subject, body=body)
        except (smtplib.SMTPException, OSError) as e:
            logger.warning("email send failed", extra={"subject": subject, "error": repr(e)})
            return False
        return True
