"""
Deadline math and the per-row transition decision.

Everything here is pure: derived only from a vault's stored fields and the
time passed in. The lifecycle engine applies the side effects.

    deadline       = lastCheckinAt + checkinIntervalDays * 24h
    activationTime = deadline + graceHours * 1h
    overdue        = now >= deadline
    fullyOverdue   = now >= activationTime

A reminder is due while overdue (but not fully overdue) when
now - lastReminderAt > reminder interval, an unset lastReminderAt counting
as the epoch. Grace periods shorter than the interval may therefore see
zero or one reminder before activation.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from enum import StrEnum

from keeper.vault.models import (
    DEFAULT_CHECKIN_DAYS,
    DEFAULT_GRACE_HOURS,
    Vault,
    VaultStatus,
    positive_or_default,
)

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
REMINDER_INTERVAL = timedelta(hours=24)


class VaultAction(StrEnum):
    SKIP = "skip"  # terminal, nothing left to do
    NONE = "none"  # within the check-in interval
    WAIT = "wait"  # in grace, reminder sent recently
    REMIND = "remind"
    ACTIVATE = "activate"
    NOTIFY_OWNER = "notify_owner"  # activated earlier, owner not yet told


def effective_interval(vault: Vault) -> timedelta:
    return timedelta(days=positive_or_default(vault.checkin_interval_days, DEFAULT_CHECKIN_DAYS))


def effective_grace(vault: Vault) -> timedelta:
    return timedelta(hours=positive_or_default(vault.grace_hours, DEFAULT_GRACE_HOURS))


def deadline_for(vault: Vault) -> datetime:
    last_checkin = vault.last_checkin_at or vault.created_at
    return last_checkin + effective_interval(vault)


def activation_time_for(vault: Vault) -> datetime:
    return deadline_for(vault) + effective_grace(vault)


def is_overdue(vault: Vault, now: datetime) -> bool:
    return now >= deadline_for(vault)


def is_fully_overdue(vault: Vault, now: datetime) -> bool:
    return now >= activation_time_for(vault)


def reminder_due(
    vault: Vault, now: datetime, interval: timedelta = REMINDER_INTERVAL
) -> bool:
    last = vault.last_reminder_at or EPOCH
    return now - last > interval


def evaluate(
    vault: Vault, now: datetime, reminder_interval: timedelta = REMINDER_INTERVAL
) -> VaultAction:
    """Decide what the reconciliation pass should do with one row."""
    if vault.status is VaultStatus.ACTIVATED and vault.activated_notified_at is None:
        return VaultAction.NOTIFY_OWNER
    if vault.status is not VaultStatus.ACTIVE:
        return VaultAction.SKIP

    if is_fully_overdue(vault, now):
        return VaultAction.ACTIVATE
    if is_overdue(vault, now):
        if reminder_due(vault, now, reminder_interval):
            return VaultAction.REMIND
        return VaultAction.WAIT
    return VaultAction.NONE
