"""
SMTP mailer.

smtplib is blocking, so each send runs in a worker thread. A failed send
raises DeliveryError; callers decide whether that matters.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr

from keeper.config import SmtpConfig
from keeper.errors import DeliveryError

logger = logging.getLogger(__name__)


class SmtpMailer:
    def __init__(self, config: SmtpConfig) -> None:
        self.config = config

    def build_message(
        self, address: str, subject: str, body: str, sender_name: str = ""
    ) -> EmailMessage:
        msg = EmailMessage()
        from_address = self.config.from_address or self.config.user
        msg["From"] = formataddr((sender_name, from_address)) if sender_name else from_address
        msg["To"] = address
        msg["Subject"] = subject
        msg.set_content(body)
        return msg

    async def send(self, address: str, subject: str, body: str, sender_name: str = "") -> None:
        try:
            msg = self.build_message(address, subject, body, sender_name)
            await asyncio.to_thread(self._deliver, msg)
        except (smtplib.SMTPException, OSError, ValueError) as e:
            raise DeliveryError("email", address, e) from e
        logger.info("E-mail sent to %s: %s", address, subject)

    def _deliver(self, msg: EmailMessage) -> None:
        cfg = self.config
        with smtplib.SMTP(cfg.host, cfg.port, timeout=cfg.timeout_seconds) as smtp:
            if cfg.starttls:
                smtp.starttls()
            if cfg.user:
                smtp.login(cfg.user, cfg.password)
            smtp.send_message(msg)
