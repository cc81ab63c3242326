"""
Vault lifecycle engine: the state machine and the reconciliation sweep.

    ACTIVE --check-in--------------------------> ACTIVE (fresh deadline)
    ACTIVE --deactivate------------------------> DEACTIVATED (terminal)
    ACTIVE --sweep, in grace, reminder stale---> ACTIVE (reminder sent)
    ACTIVE --sweep, past deadline + grace------> ACTIVATED (terminal)

Store writes are compare-and-set on the row ``version``. The irreversible
steps are ordered so that re-running a sweep is safe:

1. re-read the row and re-check the deadline right before releasing,
2. share with trustees and e-mail them (sharing is idempotent upstream),
3. flip status to ACTIVATED unconditionally (the release already happened),
4. claim ``activated_notified_at`` with a version check, and only the
   sweep that wins the claim notifies the owner.

A crash between 3 and 4 leaves an ACTIVATED row with no notification stamp;
later sweeps retry only step 4 for such rows.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from keeper.errors import ConcurrentUpdateError
from keeper.notify.templates import ActivationAlert, ReminderAlert, TrusteeRelease
from keeper.vault.models import (
    CommandResult,
    Outcome,
    OwnerIdentity,
    ReconcileReport,
    Vault,
    VaultDraft,
    VaultStatus,
    VaultSummary,
    generate_vault_id,
    parse_trustees,
    positive_or_default,
)
from keeper.vault.schedule import (
    VaultAction,
    effective_grace,
    effective_interval,
    evaluate,
    is_fully_overdue,
)

if TYPE_CHECKING:
    from keeper.config import Config
    from keeper.notify.drive import DriveClient
    from keeper.notify.port import NotificationPort
    from keeper.vault.store import VaultStore

logger = logging.getLogger(__name__)

# Attempts at a compare-and-set write before giving up
MAX_CAS_ATTEMPTS = 3


def _utcnow() -> datetime:
    return datetime.now(UTC)


class VaultLifecycleEngine:
    """Owns every vault state transition."""

    def __init__(
        self,
        config: Config,
        store: VaultStore,
        notifier: NotificationPort,
        documents: DriveClient | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.config = config
        self.store = store
        self.notifier = notifier
        self.documents = documents
        self.clock = clock
        self.reminder_interval = timedelta(hours=config.reminder_interval_hours)

    async def _io(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run a blocking store call off the event loop."""
        return await asyncio.to_thread(func, *args, **kwargs)

    # ── Creation ──

    def resolve_owner(self, owner_contact_ref: str = "") -> OwnerIdentity | None:
        """The configured principal, bound to the submitting contact."""
        email = self.config.owner_email.strip()
        if not email:
            return None
        return OwnerIdentity(email=email, contact_ref=owner_contact_ref)

    async def create_vault(self, owner: OwnerIdentity | None, draft: VaultDraft) -> CommandResult:
        """Write the secret document, then persist a new ACTIVE vault row."""
        if owner is None or not owner.email.strip():
            logger.error("Vault creation refused: no owner identity configured")
            return CommandResult(Outcome.CONFIGURATION_MISSING, detail="owner identity not configured")
        if self.documents is None:
            logger.error("Vault creation refused: document storage not configured")
            return CommandResult(
                Outcome.CONFIGURATION_MISSING, detail="document storage not configured"
            )

        title = draft.title.strip() or "Untitled Secret Vault"
        doc = await self.documents.create_document(title, draft.secret_content)

        now = self.clock()
        vault = Vault(
            id=generate_vault_id(),
            owner_email=owner.email.strip(),
            owner_contact_ref=owner.contact_ref,
            document_ref=doc.id,
            document_url=doc.url,
            attachment_ref=draft.attachment_ref.strip(),
            trustees=parse_trustees(draft.trustees),
            checkin_interval_days=positive_or_default(
                draft.checkin_interval_days, self.config.default_checkin_days
            ),
            grace_hours=positive_or_default(draft.grace_hours, self.config.default_grace_hours),
            created_at=now,
            last_checkin_at=now,
        )
        if not vault.trustees:
            logger.warning("Vault %s created without trustees", vault.id)

        await self._io(self.store.append, vault)
        await self._io(
            self.store.record_event,
            vault.id,
            "created",
            {"trustees": len(vault.trustees), "interval_days": vault.checkin_interval_days},
        )
        logger.info(
            "Created vault %s for %s (every %dd, grace %dh)",
            vault.id,
            vault.owner_email,
            vault.checkin_interval_days,
            vault.grace_hours,
        )
        return CommandResult(Outcome.OK, vault_ids=[vault.id], document_url=vault.document_url)

    # ── Check-in ──

    async def checkin_owner(self, owner_contact_ref: str) -> CommandResult:
        """Refresh every ACTIVE vault of a messaging contact. No match is a no-op."""
        vaults = await self._io(self.store.find_by_contact, owner_contact_ref)
        refreshed: list[str] = []
        for vault in vaults:
            if vault.status is not VaultStatus.ACTIVE:
                continue
            if await self._refresh_checkin(vault.id) is Outcome.OK:
                refreshed.append(vault.id)
        if refreshed:
            logger.info("Check-in from %s renewed %d vault(s)", owner_contact_ref, len(refreshed))
        return CommandResult(Outcome.OK, vault_ids=refreshed)

    async def checkin_vault(self, vault_id: str, owner_email: str) -> CommandResult:
        """Identity-proof check-in from the e-mailed link."""
        vault = await self._io(self.store.get, vault_id)
        if vault is None:
            return CommandResult(Outcome.NOT_FOUND, detail="vault not found")
        if not vault.belongs_to_email(owner_email):
            logger.warning("Check-in for %s with mismatched owner e-mail", vault_id)
            return CommandResult(Outcome.UNAUTHORIZED, detail="owner mismatch")
        if vault.status is VaultStatus.ACTIVATED:
            return CommandResult(
                Outcome.INVALID_STATE, detail="vault already activated; release cannot be undone"
            )
        if vault.status is VaultStatus.DEACTIVATED:
            return CommandResult(Outcome.INVALID_STATE, detail="vault is deactivated")

        outcome = await self._refresh_checkin(vault_id)
        if outcome is not Outcome.OK:
            return CommandResult(outcome, detail="vault changed state during check-in")
        return CommandResult(Outcome.OK, vault_ids=[vault_id])

    async def _refresh_checkin(self, vault_id: str) -> Outcome:
        for _ in range(MAX_CAS_ATTEMPTS):
            vault = await self._io(self.store.get, vault_id)
            if vault is None:
                return Outcome.NOT_FOUND
            if vault.status is not VaultStatus.ACTIVE:
                return Outcome.INVALID_STATE

            checkin_at = max(self.clock(), vault.last_checkin_at)
            written = await self._io(
                self.store.update_fields,
                vault_id,
                {"last_checkin_at": checkin_at, "last_reminder_at": None},
                expected_version=vault.version,
            )
            if written:
                await self._io(
                    self.store.record_event,
                    vault_id,
                    "checked_in",
                    {"at": checkin_at.isoformat()},
                )
                return Outcome.OK
            logger.debug("Check-in on %s lost a version race, retrying", vault_id)
        raise ConcurrentUpdateError(vault_id, MAX_CAS_ATTEMPTS)

    # ── Deactivation ──

    async def deactivate(self, vault_id: str, owner_contact_ref: str) -> CommandResult:
        """ACTIVE -> DEACTIVATED for the owning contact. Anything else changes nothing."""
        for _ in range(MAX_CAS_ATTEMPTS):
            vault = await self._io(self.store.get, vault_id)
            if vault is None:
                return CommandResult(Outcome.NOT_FOUND, detail="vault not found")
            if not vault.belongs_to_contact(owner_contact_ref):
                return CommandResult(Outcome.UNAUTHORIZED, detail="owner mismatch")
            if vault.status is not VaultStatus.ACTIVE:
                return CommandResult(
                    Outcome.INVALID_STATE, detail=f"vault is {vault.status.value}"
                )

            written = await self._io(
                self.store.update_fields,
                vault_id,
                {"status": VaultStatus.DEACTIVATED},
                expected_version=vault.version,
            )
            if written:
                await self._io(self.store.record_event, vault_id, "deactivated", None)
                logger.info("Vault %s deactivated by %s", vault_id, owner_contact_ref)
                return CommandResult(Outcome.OK, vault_ids=[vault_id])
        raise ConcurrentUpdateError(vault_id, MAX_CAS_ATTEMPTS)

    # ── Queries ──

    async def list_vaults(self, owner_contact_ref: str) -> list[VaultSummary]:
        vaults = await self._io(self.store.find_by_contact, owner_contact_ref)
        return [
            VaultSummary(
                id=v.id,
                status=v.status,
                owner_contact_ref=v.owner_contact_ref,
                last_checkin_at=v.last_checkin_at,
                checkin_interval_days=v.checkin_interval_days,
            )
            for v in vaults
        ]

    async def has_active_vault(self, owner_contact_ref: str) -> bool:
        return any(v.status is VaultStatus.ACTIVE for v in await self.list_vaults(owner_contact_ref))

    # ── Reconciliation ──

    async def reconcile(self, now: datetime | None = None) -> ReconcileReport:
        """One sequential sweep over every row. Per-row failures are isolated."""
        now = now or self.clock()
        report = ReconcileReport(started_at=now)
        vaults: list[Vault] = await self._io(self.store.scan_all)
        logger.info("Reconciliation started at %s over %d vault(s)", now.isoformat(), len(vaults))

        for vault in vaults:
            report.scanned += 1
            try:
                await self._reconcile_row(vault, now, report)
            except Exception as e:
                report.errors += 1
                logger.error("Reconciliation of %s failed: %s", vault.id, e, exc_info=True)

        report.finished_at = self.clock()
        logger.info(
            "Reconciliation done: scanned=%d reminded=%d activated=%d "
            "owner_notified=%d skipped=%d errors=%d",
            report.scanned,
            report.reminded,
            report.activated,
            report.owner_notified,
            report.skipped,
            report.errors,
        )
        return report

    async def _reconcile_row(self, vault: Vault, now: datetime, report: ReconcileReport) -> None:
        action = evaluate(vault, now, self.reminder_interval)

        if action is VaultAction.SKIP:
            report.skipped += 1
        elif action is VaultAction.REMIND:
            if await self._send_reminder(vault, now):
                report.reminded += 1
        elif action is VaultAction.ACTIVATE:
            share_errors = await self._release(vault, now)
            if share_errors is not None:
                report.activated += 1
                if await self._notify_owner_once(vault.id, now, share_errors):
                    report.owner_notified += 1
        elif action is VaultAction.NOTIFY_OWNER:
            logger.info("Vault %s activated earlier but owner not yet notified", vault.id)
            if await self._notify_owner_once(vault.id, now, []):
                report.owner_notified += 1

    async def _send_reminder(self, vault: Vault, now: datetime) -> bool:
        # Claim the reminder slot first so overlapping sweeps send it once
        claimed = await self._io(
            self.store.update_fields,
            vault.id,
            {"last_reminder_at": now},
            expected_version=vault.version,
        )
        if not claimed:
            logger.info("Vault %s changed since scan, reminder skipped", vault.id)
            return False

        alert = ReminderAlert(
            vault_id=vault.id,
            checkin_days=int(effective_interval(vault).days),
            grace_hours=int(effective_grace(vault).total_seconds() // 3600),
            checkin_url=self.config.checkin_url(vault.id, vault.owner_email),
        )
        pushed = False
        if vault.owner_contact_ref:
            pushed = await self.notifier.push_message(vault.owner_contact_ref, alert)
        emailed = await self.notifier.send_email(
            vault.owner_email, alert, self.config.sender_name
        )
        if not pushed and not emailed:
            logger.error("Reminder for %s reached no channel", vault.id)

        await self._io(
            self.store.record_event, vault.id, "reminded", {"push": pushed, "email": emailed}
        )
        logger.info("Reminder sent for %s (push=%s, email=%s)", vault.id, pushed, emailed)
        return True

    async def _release(self, vault: Vault, now: datetime) -> list[str] | None:
        """Share with trustees and flip to ACTIVATED. None if the row moved on."""
        current = await self._io(self.store.get, vault.id)
        if current is None:
            logger.warning("Vault %s disappeared before release", vault.id)
            return None
        if current.status is not VaultStatus.ACTIVE or not is_fully_overdue(current, now):
            logger.info("Vault %s changed since scan (%s), not releasing", vault.id, current.status)
            return None

        share_errors: list[str] = []
        share_errors += await self.notifier.share_resource(current.document_ref, current.trustees)
        if current.attachment_ref:
            share_errors += await self.notifier.share_resource(
                current.attachment_ref, current.trustees
            )

        release = TrusteeRelease(
            vault_id=current.id,
            owner_email=current.owner_email,
            document_url=current.document_url,
            attachment_ref=current.attachment_ref,
            share_errors=tuple(share_errors),
        )
        for trustee in current.trustees:
            if not await self.notifier.send_email(trustee, release, self.config.sender_name):
                logger.warning("Release notice to trustee %s for %s failed", trustee, current.id)

        await self._io(self.store.update_fields, current.id, {"status": VaultStatus.ACTIVATED})
        await self._io(
            self.store.record_event,
            current.id,
            "activated",
            {"trustees": current.trustees, "share_errors": share_errors},
        )
        logger.warning(
            "Vault %s ACTIVATED: released to %d trustee(s), %d share error(s)",
            current.id,
            len(current.trustees),
            len(share_errors),
        )
        return share_errors

    async def _notify_owner_once(
        self, vault_id: str, now: datetime, share_errors: list[str]
    ) -> bool:
        """Tell the owner about the release. Only the caller that claims the stamp sends."""
        current = await self._io(self.store.get, vault_id)
        if current is None or current.status is not VaultStatus.ACTIVATED:
            return False
        if current.activated_notified_at is not None:
            logger.debug("Owner of %s already notified", vault_id)
            return False

        claimed = await self._io(
            self.store.update_fields,
            vault_id,
            {"activated_notified_at": now},
            expected_version=current.version,
        )
        if not claimed:
            logger.info("Owner notification for %s claimed elsewhere", vault_id)
            return False

        alert = ActivationAlert(
            vault_id=current.id,
            document_url=current.document_url,
            trustees=tuple(current.trustees),
            share_errors=tuple(share_errors),
        )
        pushed = False
        if current.owner_contact_ref:
            pushed = await self.notifier.push_message(current.owner_contact_ref, alert)
        emailed = await self.notifier.send_email(
            current.owner_email, alert, self.config.sender_name
        )
        await self._io(
            self.store.record_event,
            vault_id,
            "owner_notified",
            {"push": pushed, "email": emailed},
        )
        return True
