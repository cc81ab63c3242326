"""
Template rendering for the Telegram and e-mail adapters.

Telegram gets HTML text plus an optional list of button rows; e-mail gets a
plain-text subject and body.
"""

from __future__ import annotations

import html
import re
from dataclasses import dataclass

from keeper.notify.templates import (
    ActivationAlert,
    CheckinConfirm,
    DeactivationConfirm,
    Notification,
    RegisterPrompt,
    ReminderAlert,
    TrusteeRelease,
    VaultList,
    Welcome,
)
from keeper.vault.models import VaultStatus

CHECKIN_ACTION = "action=checkin"


def deactivate_action(vault_id: str) -> str:
    return f"action=deactivate&vaultId={vault_id}"


@dataclass(frozen=True)
class Button:
    text: str
    callback_data: str = ""
    url: str = ""


@dataclass(frozen=True)
class RenderedMessage:
    text: str
    buttons: tuple[tuple[Button, ...], ...] = ()


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    body: str


_STATUS_MARK = {
    VaultStatus.ACTIVE: "\U0001f7e2",  # green circle
    VaultStatus.DEACTIVATED: "⚪",  # white circle
    VaultStatus.ACTIVATED: "\U0001f534",  # red circle
}


def render_message(content: Notification | str) -> RenderedMessage:
    """Render a template (or raw text) as a chat message."""
    if isinstance(content, str):
        return RenderedMessage(text=html.escape(content))

    match content:
        case RegisterPrompt(onboard_url=url, has_active_vault=True):
            return RenderedMessage(
                text=(
                    "You already have an active vault.\n"
                    'Send "create" to set up another one, or open the form below.'
                ),
                buttons=((Button("Create another vault", url=url),),),
            )
        case RegisterPrompt(onboard_url=url):
            return RenderedMessage(
                text="Fill in your vault details here:",
                buttons=((Button("Open vault form", url=url),),),
            )
        case ReminderAlert():
            return RenderedMessage(
                text=(
                    "<b>Check-in overdue</b>\n\n"
                    f"No check-in received for {content.checkin_days} days. "
                    f"Tap <b>I'm still here</b> within {content.grace_hours} hours, "
                    "or your vault will be shared with your trustees."
                ),
                buttons=((Button("I'm still here", callback_data=CHECKIN_ACTION),),),
            )
        case ActivationAlert():
            lines = [
                "<b>Vault released</b>\n",
                f"Vault <code>{html.escape(content.vault_id)}</code> was shared with "
                f"{len(content.trustees)} trustee(s) after the grace period ended.",
            ]
            if content.share_errors:
                lines.append("\nSome shares failed:")
                lines.extend(f"- {html.escape(e)}" for e in content.share_errors)
            return RenderedMessage(text="\n".join(lines))
        case TrusteeRelease():
            return RenderedMessage(
                text=f"A vault was released to you: {html.escape(content.document_url)}"
            )
        case DeactivationConfirm(vault_id=vault_id, success=True):
            return RenderedMessage(
                text=f"Vault <code>{html.escape(vault_id)}</code> deactivated. "
                "It will never be released."
            )
        case DeactivationConfirm(vault_id=vault_id):
            return RenderedMessage(
                text=f"Could not deactivate <code>{html.escape(vault_id)}</code>: "
                "no active vault with that id belongs to you."
            )
        case CheckinConfirm(refreshed=0):
            return RenderedMessage(text="No active vault found to check in.")
        case CheckinConfirm(refreshed=n):
            return RenderedMessage(text=f"Check-in recorded. {n} vault(s) renewed.")
        case VaultList(vaults=[]):
            return RenderedMessage(text='You have no vaults yet. Send "register" to create one.')
        case VaultList(vaults=vaults):
            lines = ["<b>Your vaults</b>\n"]
            rows: list[tuple[Button, ...]] = []
            for v in vaults:
                mark = _STATUS_MARK.get(v.status, "")
                lines.append(
                    f"{mark} <code>{html.escape(v.id)}</code> {v.status.value} "
                    f"(every {v.checkin_interval_days}d, last {v.last_checkin_at:%Y-%m-%d})"
                )
                if v.status is VaultStatus.ACTIVE:
                    rows.append(
                        (Button(f"Deactivate {v.id[:14]}", callback_data=deactivate_action(v.id)),)
                    )
            if rows:
                rows.append((Button("Check in", callback_data=CHECKIN_ACTION),))
            return RenderedMessage(text="\n".join(lines), buttons=tuple(rows))
        case Welcome():
            return RenderedMessage(
                text=(
                    "<b>Welcome to Secret Keeper</b>\n\n"
                    "register: create a vault\n"
                    "checkin: prove you are still here\n"
                    "list: show your vaults\n"
                    "deactivate &lt;id&gt;: permanently disable a vault"
                )
            )
    raise TypeError(f"Unsupported notification: {content!r}")


def render_email(content: Notification | str, base_subject: str = "Secret Keeper") -> RenderedEmail:
    """Render a template (or raw text) as a plain-text e-mail."""
    if isinstance(content, str):
        return RenderedEmail(subject=base_subject, body=content)

    match content:
        case ReminderAlert():
            body = (
                f"We have not received a check-in for {content.checkin_days} days.\n"
                f"Please confirm within {content.grace_hours} hours or vault "
                f"{content.vault_id} will be shared with your trustees.\n"
            )
            if content.checkin_url:
                body += f"\nCheck in now:\n{content.checkin_url}\n"
            return RenderedEmail(subject=f"{base_subject} - Final Check-in Reminder", body=body)
        case ActivationAlert():
            body = (
                f"Your vault {content.vault_id} was released after the grace period ended.\n\n"
                f"Document: {content.document_url}\n"
                f"Trustees: {', '.join(content.trustees) or '(none)'}\n"
            )
            if content.share_errors:
                body += "\nErrors while sharing:\n" + "\n".join(content.share_errors) + "\n"
            return RenderedEmail(subject=f"{base_subject} - Your vault was activated", body=body)
        case TrusteeRelease():
            body = (
                "Secret Keeper has released a document according to the conditions "
                f"set by its owner (Vault ID: {content.vault_id}).\n\n"
                f"You can view the document at:\n{content.document_url}\n"
            )
            if content.attachment_ref:
                body += f"\nSupplementary files: {content.attachment_ref}\n"
            if content.share_errors:
                body += "\nNote: some access grants failed:\n" + "\n".join(content.share_errors) + "\n"
            body += "\nIf you need help, contact the system administrator."
            return RenderedEmail(
                subject=f"{base_subject} - Vault from {content.owner_email or 'A'} is activated",
                body=body,
            )
    message = render_message(content)
    return RenderedEmail(subject=base_subject, body=html.unescape(_strip_tags(message.text)))


def _strip_tags(text: str) -> str:
    return re.sub(r"<[^>]+>", "", text)
