"""
Notification templates: the closed set of outbound message shapes.

The lifecycle engine and dispatcher only ever build these; turning them into
Telegram text + buttons or e-mail subject + body is the adapters' job
(see keeper.notify.render).
"""

from __future__ import annotations

from dataclasses import dataclass, field

from keeper.vault.models import VaultSummary


@dataclass(frozen=True)
class RegisterPrompt:
    onboard_url: str
    has_active_vault: bool = False


@dataclass(frozen=True)
class ReminderAlert:
    vault_id: str
    checkin_days: int
    grace_hours: int
    checkin_url: str = ""


@dataclass(frozen=True)
class ActivationAlert:
    """Sent to the owner once their vault has been released."""

    vault_id: str
    document_url: str
    trustees: tuple[str, ...] = ()
    share_errors: tuple[str, ...] = ()


@dataclass(frozen=True)
class TrusteeRelease:
    """Sent to each trustee when a vault is released to them."""

    vault_id: str
    owner_email: str
    document_url: str
    attachment_ref: str = ""
    share_errors: tuple[str, ...] = ()


@dataclass(frozen=True)
class DeactivationConfirm:
    vault_id: str
    success: bool


@dataclass(frozen=True)
class CheckinConfirm:
    refreshed: int


@dataclass(frozen=True)
class VaultList:
    vaults: list[VaultSummary] = field(default_factory=list)


@dataclass(frozen=True)
class Welcome:
    pass


Notification = (
    RegisterPrompt
    | ReminderAlert
    | ActivationAlert
    | TrusteeRelease
    | DeactivationConfirm
    | CheckinConfirm
    | VaultList
    | Welcome
)
