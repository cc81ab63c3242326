"""
Outbound notification port.

The lifecycle engine talks only to ``NotificationPort``. Every method is
best-effort: failures are logged and reported through the return value,
never raised, so one bad recipient cannot abort a reconciliation row.

``ChannelNotifier`` is the production implementation. It routes pushes to
the Telegram sender registered by the bot (``set_telegram_sender``), e-mail
to the SMTP mailer and shares to the Drive client.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from keeper.errors import DeliveryError
from keeper.notify.render import RenderedMessage, render_email, render_message
from keeper.notify.templates import Notification

if TYPE_CHECKING:
    from keeper.notify.drive import DriveClient
    from keeper.notify.mailer import SmtpMailer

logger = logging.getLogger(__name__)

PushSender = Callable[[str, RenderedMessage], Awaitable[None]]

# Set by the daemon when TelegramBot initializes
_telegram_send: PushSender | None = None


def set_telegram_sender(send_func: PushSender | None) -> None:
    """Register the Telegram push function (called by the bot on startup)."""
    global _telegram_send
    _telegram_send = send_func


def get_telegram_sender() -> PushSender | None:
    return _telegram_send


class NotificationPort(ABC):
    """Abstract sink for outbound messages and resource grants."""

    @abstractmethod
    async def push_message(self, recipient_ref: str, content: Notification | str) -> bool:
        """Push to a messaging-platform user. Returns True if delivered."""

    @abstractmethod
    async def send_email(
        self, address: str, content: Notification | str, sender_name: str = ""
    ) -> bool:
        """Send an e-mail rendered from ``content``. Returns True if delivered."""

    @abstractmethod
    async def share_resource(self, resource_ref: str, emails: list[str]) -> list[str]:
        """Grant each address read access. Returns one error string per failure."""


class ChannelNotifier(NotificationPort):
    """Telegram push + SMTP e-mail + Drive sharing."""

    def __init__(
        self,
        mailer: SmtpMailer | None = None,
        drive: DriveClient | None = None,
        base_subject: str = "Secret Keeper",
    ) -> None:
        self.mailer = mailer
        self.drive = drive
        self.base_subject = base_subject

    async def push_message(self, recipient_ref: str, content: Notification | str) -> bool:
        sender = get_telegram_sender()
        if sender is None:
            logger.warning("Telegram sender not initialized, can't push to %s", recipient_ref)
            return False
        if not recipient_ref:
            logger.debug("No contact ref, skipping push")
            return False
        try:
            await sender(recipient_ref, render_message(content))
            return True
        except Exception as e:
            logger.error("Telegram push to %s failed: %s", recipient_ref, e)
            return False

    async def send_email(
        self, address: str, content: Notification | str, sender_name: str = ""
    ) -> bool:
        if self.mailer is None:
            logger.warning("SMTP not configured, can't e-mail %s", address)
            return False
        if not address:
            return False
        rendered = render_email(content, self.base_subject)
        try:
            await self.mailer.send(address, rendered.subject, rendered.body, sender_name)
            return True
        except DeliveryError as e:
            logger.error("%s", e)
            return False
        except Exception as e:
            logger.error("E-mail to %r failed: %s", address, e, exc_info=True)
            return False

    async def share_resource(self, resource_ref: str, emails: list[str]) -> list[str]:
        if not resource_ref or not emails:
            return []
        if self.drive is None:
            logger.error("Drive not configured, can't share %s", resource_ref)
            return [f"{resource_ref}: document sharing is not configured"]

        errors: list[str] = []
        for email in emails:
            try:
                await self.drive.share(resource_ref, email)
            except DeliveryError as e:
                logger.error("%s", e)
                errors.append(f"{email}: {e}")
            except Exception as e:
                logger.error("Sharing %s with %r failed: %s", resource_ref, email, e, exc_info=True)
                errors.append(f"{email}: {e}")
        return errors


@dataclass
class SentItem:
    channel: str
    target: str
    content: Notification | str | list[str]
    sender_name: str = ""


@dataclass
class RecordingNotifier(NotificationPort):
    """Keeps every call in memory instead of delivering it."""

    sent: list[SentItem] = field(default_factory=list)
    fail_push: bool = False
    fail_email: bool = False
    share_failures: dict[str, str] = field(default_factory=dict)

    async def push_message(self, recipient_ref: str, content: Notification | str) -> bool:
        self.sent.append(SentItem("push", recipient_ref, content))
        return bool(recipient_ref) and not self.fail_push

    async def send_email(
        self, address: str, content: Notification | str, sender_name: str = ""
    ) -> bool:
        self.sent.append(SentItem("email", address, content, sender_name))
        return bool(address) and not self.fail_email

    async def share_resource(self, resource_ref: str, emails: list[str]) -> list[str]:
        self.sent.append(SentItem("share", resource_ref, list(emails)))
        return [
            f"{email}: {self.share_failures[email]}"
            for email in emails
            if email in self.share_failures
        ]

    def of(self, channel: str) -> list[SentItem]:
        return [s for s in self.sent if s.channel == channel]

    def contents(self, kind: type) -> list[SentItem]:
        return [s for s in self.sent if isinstance(s.content, kind)]
