"""
Data models for vaults and lifecycle commands.

All models are plain dataclasses. Persisted field names follow the row
schema: vaultId, ownerEmail, ownerContactRef, documentId, documentUrl,
attachmentRef, trusteesCSV, checkinIntervalDays, graceHours, lastCheckinAt,
status, createdAt, lastReminderAt, activatedNotifiedAt.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

DEFAULT_CHECKIN_DAYS = 30
DEFAULT_GRACE_HOURS = 12

_TRUSTEE_SEPARATORS = re.compile(r"[,;\r\n]")


class VaultStatus(StrEnum):
    ACTIVE = "ACTIVE"
    DEACTIVATED = "DEACTIVATED"
    ACTIVATED = "ACTIVATED"

    @property
    def is_terminal(self) -> bool:
        return self is not VaultStatus.ACTIVE


class Outcome(StrEnum):
    OK = "ok"
    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    INVALID_STATE = "invalid_state"
    CONFIGURATION_MISSING = "configuration_missing"


def generate_vault_id() -> str:
    return f"VAULT-{uuid.uuid4()}"


def parse_trustees(raw: str | list[str] | None) -> list[str]:
    """Split addresses on commas, semicolons or line breaks; trimmed, empties dropped."""
    if raw is None:
        return []
    items = [raw] if isinstance(raw, str) else raw
    return [
        address.strip()
        for item in items
        if item
        for address in _TRUSTEE_SEPARATORS.split(item)
        if address.strip()
    ]


def positive_or_default(value: int | str | None, default: int) -> int:
    """Coerce a submitted number; absent, unparsable or non-positive → default."""
    try:
        number = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


@dataclass
class Vault:
    """A registered secret-document-release unit. One row per vault."""

    id: str
    owner_email: str
    owner_contact_ref: str
    document_ref: str
    document_url: str
    trustees: list[str]
    created_at: datetime
    last_checkin_at: datetime
    attachment_ref: str = ""
    checkin_interval_days: int = DEFAULT_CHECKIN_DAYS
    grace_hours: int = DEFAULT_GRACE_HOURS
    status: VaultStatus = VaultStatus.ACTIVE
    last_reminder_at: datetime | None = None
    activated_notified_at: datetime | None = None

    # Optimistic concurrency token, bumped on every write
    version: int = 0

    def belongs_to_contact(self, owner_contact_ref: str) -> bool:
        return bool(owner_contact_ref) and self.owner_contact_ref == owner_contact_ref

    def belongs_to_email(self, owner_email: str) -> bool:
        return bool(owner_email) and self.owner_email.strip().lower() == owner_email.strip().lower()

    @property
    def trustees_csv(self) -> str:
        return ",".join(self.trustees)


@dataclass(frozen=True)
class OwnerIdentity:
    """The principal treated as vault owner, resolved by the caller."""

    email: str
    contact_ref: str = ""


@dataclass
class VaultDraft:
    """An owner's submission, before the document exists."""

    secret_content: str
    trustees: list[str] = field(default_factory=list)
    title: str = "Untitled Secret Vault"
    attachment_ref: str = ""
    checkin_interval_days: int | None = None
    grace_hours: int | None = None


@dataclass
class VaultSummary:
    id: str
    status: VaultStatus
    owner_contact_ref: str
    last_checkin_at: datetime
    checkin_interval_days: int


@dataclass
class CommandResult:
    """Outcome of an owner command (create / check-in / deactivate)."""

    outcome: Outcome
    vault_ids: list[str] = field(default_factory=list)
    document_url: str = ""
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.OK


@dataclass
class ReconcileReport:
    """Counters for one reconciliation sweep."""

    started_at: datetime
    scanned: int = 0
    skipped: int = 0
    reminded: int = 0
    activated: int = 0
    owner_notified: int = 0
    errors: int = 0
    finished_at: datetime | None = None
