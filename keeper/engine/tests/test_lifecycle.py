"""Tests for vault creation, check-in, deactivation and listing."""

from __future__ import annotations

from datetime import timedelta

import pytest

from keeper.config import Config
from keeper.engine.lifecycle import MAX_CAS_ATTEMPTS, VaultLifecycleEngine
from keeper.errors import ConcurrentUpdateError, DeliveryError
from keeper.vault.models import Outcome, OwnerIdentity, VaultDraft, VaultStatus
from keeper.vault.store import MemoryVaultStore


class ConflictingStore(MemoryVaultStore):
    """Refuses the first ``conflicts`` compare-and-set writes."""

    def __init__(self, conflicts: int) -> None:
        super().__init__()
        self.conflicts = conflicts

    def update_fields(self, vault_id, changes, *, expected_version=None):
        if expected_version is not None and self.conflicts > 0:
            self.conflicts -= 1
            return False
        return super().update_fields(vault_id, changes, expected_version=expected_version)


class TestCreateVault:
    @pytest.mark.asyncio
    async def test_creates_active_vault(self, engine, store, documents, t0):
        owner = engine.resolve_owner("1001")
        result = await engine.create_vault(
            owner,
            VaultDraft(
                secret_content="the combination is 12-34-56",
                trustees=" a@x.com, ,b@x.com ",  # type: ignore[arg-type]
                title="Safe",
                attachment_ref="folder-9",
            ),
        )

        assert result.outcome is Outcome.OK
        assert result.document_url == "https://docs.google.com/document/d/doc-1/edit"
        vault = store.get(result.vault_ids[0])
        assert vault.id.startswith("VAULT-")
        assert vault.status is VaultStatus.ACTIVE
        assert vault.owner_email == "owner@example.com"
        assert vault.owner_contact_ref == "1001"
        assert vault.trustees == ["a@x.com", "b@x.com"]
        assert vault.attachment_ref == "folder-9"
        assert vault.created_at == vault.last_checkin_at == t0
        assert vault.last_reminder_at is None
        assert vault.activated_notified_at is None
        assert documents.created == [("Safe", "the combination is 12-34-56")]
        assert store.events[0]["event_type"] == "created"

    @pytest.mark.asyncio
    async def test_defaults_for_missing_or_non_positive_schedule(self, engine, store):
        owner = engine.resolve_owner("1001")
        r1 = await engine.create_vault(owner, VaultDraft("s", checkin_interval_days=0, grace_hours=-2))
        r2 = await engine.create_vault(owner, VaultDraft("s", checkin_interval_days=7, grace_hours=48))

        v1, v2 = store.get(r1.vault_ids[0]), store.get(r2.vault_ids[0])
        assert (v1.checkin_interval_days, v1.grace_hours) == (30, 12)
        assert (v2.checkin_interval_days, v2.grace_hours) == (7, 48)

    @pytest.mark.asyncio
    async def test_blank_title_gets_default(self, engine, documents):
        await engine.create_vault(engine.resolve_owner(), VaultDraft("s", title="  "))
        assert documents.created[0][0] == "Untitled Secret Vault"

    @pytest.mark.asyncio
    async def test_missing_owner_binding_fails_closed(self, store, notifier, documents, clock):
        engine = VaultLifecycleEngine(Config(owner_email=""), store, notifier, documents, clock)

        owner = engine.resolve_owner("1001")
        result = await engine.create_vault(owner, VaultDraft("s", trustees=["a@x.com"]))

        assert owner is None
        assert result.outcome is Outcome.CONFIGURATION_MISSING
        assert store.scan_all() == []
        assert documents.created == []

    @pytest.mark.asyncio
    async def test_blank_owner_email_fails_closed(self, engine, store):
        result = await engine.create_vault(OwnerIdentity(email="  "), VaultDraft("s"))
        assert result.outcome is Outcome.CONFIGURATION_MISSING
        assert store.scan_all() == []

    @pytest.mark.asyncio
    async def test_missing_document_service(self, keeper_config, store, notifier, clock):
        engine = VaultLifecycleEngine(keeper_config, store, notifier, None, clock)
        result = await engine.create_vault(engine.resolve_owner(), VaultDraft("s"))
        assert result.outcome is Outcome.CONFIGURATION_MISSING
        assert store.scan_all() == []

    @pytest.mark.asyncio
    async def test_document_failure_persists_nothing(self, engine, store, documents):
        documents.fail_with = DeliveryError("drive", "Safe", "401")
        with pytest.raises(DeliveryError):
            await engine.create_vault(engine.resolve_owner(), VaultDraft("s"))
        assert store.scan_all() == []


class TestCheckinOwner:
    @pytest.mark.asyncio
    async def test_refreshes_all_active_vaults(self, engine, store, clock, make_vault, t0):
        a = make_vault(last_reminder_at=t0 + timedelta(days=30, hours=1))
        b = make_vault()
        done = make_vault(status=VaultStatus.DEACTIVATED)
        other = make_vault(owner_contact_ref="2002")
        for v in (a, b, done, other):
            store.append(v)
        clock.now = t0 + timedelta(days=30, hours=5)

        result = await engine.checkin_owner("1001")

        assert result.ok
        assert sorted(result.vault_ids) == sorted([a.id, b.id])
        for vid in (a.id, b.id):
            row = store.get(vid)
            assert row.last_checkin_at == clock.now
            assert row.last_reminder_at is None
        assert store.get(done.id).last_checkin_at == t0
        assert store.get(other.id).last_checkin_at == t0

    @pytest.mark.asyncio
    async def test_no_matching_vault_is_a_noop(self, engine):
        result = await engine.checkin_owner("9999")
        assert result.outcome is Outcome.OK
        assert result.vault_ids == []

    @pytest.mark.asyncio
    async def test_activated_vault_stays_activated(self, engine, store, make_vault, clock, t0):
        vault = make_vault(status=VaultStatus.ACTIVATED, activated_notified_at=t0)
        store.append(vault)
        clock.now = t0 + timedelta(days=40)

        result = await engine.checkin_owner("1001")

        assert result.vault_ids == []
        row = store.get(vault.id)
        assert row.status is VaultStatus.ACTIVATED
        assert row.last_checkin_at == t0

    @pytest.mark.asyncio
    async def test_checkin_time_never_moves_backwards(self, engine, store, make_vault, clock, t0):
        vault = make_vault(last_checkin_at=t0 + timedelta(days=1))
        store.append(vault)
        clock.now = t0

        await engine.checkin_owner("1001")

        assert store.get(vault.id).last_checkin_at == t0 + timedelta(days=1)

    @pytest.mark.asyncio
    async def test_checkin_records_event(self, engine, store, make_vault):
        store.append(make_vault())
        await engine.checkin_owner("1001")
        assert [e["event_type"] for e in store.events] == ["checked_in"]


class TestCheckinVault:
    @pytest.mark.asyncio
    async def test_link_checkin(self, engine, store, make_vault, clock, t0):
        vault = make_vault(last_reminder_at=t0 + timedelta(days=30, hours=1))
        store.append(vault)
        clock.now = t0 + timedelta(days=30, hours=2)

        result = await engine.checkin_vault(vault.id, "OWNER@example.com")

        assert result.ok
        row = store.get(vault.id)
        assert row.last_checkin_at == clock.now
        assert row.last_reminder_at is None

    @pytest.mark.asyncio
    async def test_not_found(self, engine):
        result = await engine.checkin_vault("VAULT-missing", "owner@example.com")
        assert result.outcome is Outcome.NOT_FOUND

    @pytest.mark.asyncio
    async def test_owner_mismatch_changes_nothing(self, engine, store, make_vault, clock, t0):
        vault = make_vault()
        store.append(vault)
        clock.now = t0 + timedelta(days=3)

        result = await engine.checkin_vault(vault.id, "mallory@example.com")

        assert result.outcome is Outcome.UNAUTHORIZED
        assert store.get(vault.id).last_checkin_at == t0
        assert store.get(vault.id).version == 0

    @pytest.mark.asyncio
    async def test_after_activation_fails_loudly(self, engine, store, make_vault, t0):
        vault = make_vault(status=VaultStatus.ACTIVATED, activated_notified_at=t0)
        store.append(vault)

        result = await engine.checkin_vault(vault.id, "owner@example.com")

        assert result.outcome is Outcome.INVALID_STATE
        assert "already activated" in result.detail
        assert store.get(vault.id).status is VaultStatus.ACTIVATED

    @pytest.mark.asyncio
    async def test_deactivated(self, engine, store, make_vault):
        vault = make_vault(status=VaultStatus.DEACTIVATED)
        store.append(vault)
        result = await engine.checkin_vault(vault.id, "owner@example.com")
        assert result.outcome is Outcome.INVALID_STATE


class TestCheckinConcurrency:
    @pytest.mark.asyncio
    async def test_retries_after_version_conflict(self, keeper_config, notifier, clock, make_vault):
        store = ConflictingStore(conflicts=2)
        vault = make_vault()
        store.append(vault)
        engine = VaultLifecycleEngine(keeper_config, store, notifier, clock=clock)

        result = await engine.checkin_vault(vault.id, "owner@example.com")

        assert result.ok
        assert store.get(vault.id).version == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_persistent_conflict(self, keeper_config, notifier, clock, make_vault):
        store = ConflictingStore(conflicts=MAX_CAS_ATTEMPTS)
        vault = make_vault()
        store.append(vault)
        engine = VaultLifecycleEngine(keeper_config, store, notifier, clock=clock)

        with pytest.raises(ConcurrentUpdateError):
            await engine.checkin_owner("1001")


class TestDeactivate:
    @pytest.mark.asyncio
    async def test_deactivates_owned_active_vault(self, engine, store, make_vault):
        vault = make_vault()
        store.append(vault)

        result = await engine.deactivate(vault.id, "1001")

        assert result.ok
        assert store.get(vault.id).status is VaultStatus.DEACTIVATED
        assert store.events[-1]["event_type"] == "deactivated"

    @pytest.mark.asyncio
    async def test_wrong_owner(self, engine, store, make_vault):
        vault = make_vault()
        store.append(vault)

        result = await engine.deactivate(vault.id, "2002")

        assert result.outcome is Outcome.UNAUTHORIZED
        assert store.get(vault.id).status is VaultStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_missing(self, engine):
        assert (await engine.deactivate("VAULT-missing", "1001")).outcome is Outcome.NOT_FOUND

    @pytest.mark.asyncio
    async def test_already_deactivated(self, engine, store, make_vault):
        vault = make_vault(status=VaultStatus.DEACTIVATED)
        store.append(vault)
        result = await engine.deactivate(vault.id, "1001")
        assert result.outcome is Outcome.INVALID_STATE
        assert store.get(vault.id).version == 0

    @pytest.mark.asyncio
    async def test_activated_vault_cannot_be_deactivated(self, engine, store, make_vault, t0):
        vault = make_vault(status=VaultStatus.ACTIVATED, activated_notified_at=t0)
        store.append(vault)

        result = await engine.deactivate(vault.id, "1001")

        assert not result.ok
        assert result.outcome is Outcome.INVALID_STATE
        assert store.get(vault.id).status is VaultStatus.ACTIVATED

    @pytest.mark.asyncio
    async def test_retries_after_version_conflict(self, keeper_config, notifier, clock, make_vault):
        store = ConflictingStore(conflicts=1)
        vault = make_vault()
        store.append(vault)
        engine = VaultLifecycleEngine(keeper_config, store, notifier, clock=clock)

        assert (await engine.deactivate(vault.id, "1001")).ok
        assert store.get(vault.id).status is VaultStatus.DEACTIVATED


class TestListVaults:
    @pytest.mark.asyncio
    async def test_lists_only_own_vaults(self, engine, store, make_vault):
        mine = make_vault(checkin_interval_days=7)
        store.append(mine)
        store.append(make_vault(owner_contact_ref="2002"))

        summaries = await engine.list_vaults("1001")

        assert [s.id for s in summaries] == [mine.id]
        assert summaries[0].checkin_interval_days == 7
        assert summaries[0].status is VaultStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_has_active_vault(self, engine, store, make_vault):
        assert not await engine.has_active_vault("1001")
        store.append(make_vault(status=VaultStatus.DEACTIVATED))
        assert not await engine.has_active_vault("1001")
        store.append(make_vault())
        assert await engine.has_active_vault("1001")
