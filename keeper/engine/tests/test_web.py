"""Tests for the FastAPI surface."""

from __future__ import annotations

from datetime import timedelta
from urllib.parse import urlsplit

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from keeper.config import Config
from keeper.engine import dedup
from keeper.engine.web import create_app
from keeper.errors import StoreUnavailableError
from keeper.notify.templates import ReminderAlert
from keeper.vault.models import VaultStatus


@pytest_asyncio.fixture
async def client(engine):
    transport = ASGITransport(app=create_app(engine))
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client):
        r = await client.get("/health")
        assert r.status_code == 200
        body = r.json()
        assert body["status"] == "healthy"
        assert body["owner_configured"] is True
        assert body["telegram_configured"] is True
        assert body["smtp_configured"] is False
        assert body["reconcile_running"] is False


class TestLinkCheckin:
    @pytest.mark.asyncio
    async def test_ok(self, client, store, make_vault, clock, t0):
        vault = make_vault()
        store.append(vault)
        clock.now = t0 + timedelta(days=2)

        r = await client.get("/checkin", params={"vaultId": vault.id, "email": "owner@example.com"})

        assert r.status_code == 200
        assert r.json()["outcome"] == "ok"
        assert store.get(vault.id).last_checkin_at == clock.now

    @pytest.mark.asyncio
    async def test_reminder_link_checks_in_plus_addressed_owner(
        self, engine, client, store, notifier, make_vault, clock, t0
    ):
        vault = make_vault(owner_email="alice+vault@example.com")
        store.append(vault)
        await engine.reconcile(t0 + timedelta(days=30, hours=1))
        link = urlsplit(notifier.contents(ReminderAlert)[-1].content.checkin_url)
        clock.now = t0 + timedelta(days=30, hours=2)

        r = await client.get(f"{link.path}?{link.query}")

        assert r.status_code == 200
        row = store.get(vault.id)
        assert row.last_checkin_at == clock.now
        assert row.last_reminder_at is None

    @pytest.mark.asyncio
    async def test_not_found(self, client):
        r = await client.get("/checkin", params={"vaultId": "VAULT-x", "email": "a@x.com"})
        assert r.status_code == 404
        assert r.json()["outcome"] == "not_found"

    @pytest.mark.asyncio
    async def test_owner_mismatch(self, client, store, make_vault):
        vault = make_vault()
        store.append(vault)
        r = await client.get("/checkin", params={"vaultId": vault.id, "email": "evil@x.com"})
        assert r.status_code == 403
        assert r.json()["outcome"] == "unauthorized"

    @pytest.mark.asyncio
    async def test_already_activated(self, client, store, make_vault, t0):
        vault = make_vault(status=VaultStatus.ACTIVATED, activated_notified_at=t0)
        store.append(vault)
        r = await client.get("/checkin", params={"vaultId": vault.id, "email": "owner@example.com"})
        assert r.status_code == 409
        assert "already activated" in r.json()["message"]

    @pytest.mark.asyncio
    async def test_missing_params(self, client):
        r = await client.get("/checkin")
        assert r.status_code == 422

    @pytest.mark.asyncio
    async def test_store_down_is_503(self, client, store, monkeypatch):
        def boom(vault_id):
            raise StoreUnavailableError("get")

        monkeypatch.setattr(store, "get", boom)
        r = await client.get("/checkin", params={"vaultId": "VAULT-x", "email": "a@x.com"})
        assert r.status_code == 503


class TestCreateVault:
    @pytest.mark.asyncio
    async def test_creates(self, client, store):
        r = await client.post(
            "/api/vaults",
            json={
                "secret_content": "s3cret",
                "trustees": "a@x.com, b@x.com",
                "owner_contact_ref": "1001",
                "checkin_interval_days": 14,
            },
        )

        assert r.status_code == 201
        body = r.json()
        vault = store.get(body["vault_id"])
        assert vault.trustees == ["a@x.com", "b@x.com"]
        assert vault.checkin_interval_days == 14
        assert vault.grace_hours == 12
        assert body["document_url"] == vault.document_url

    @pytest.mark.asyncio
    async def test_without_owner_binding(self, engine, client, store):
        engine.config = Config(owner_email="")
        r = await client.post("/api/vaults", json={"secret_content": "s"})
        assert r.status_code == 503
        assert r.json()["outcome"] == "configuration_missing"
        assert store.scan_all() == []

    @pytest.mark.asyncio
    async def test_validation(self, client):
        r = await client.post("/api/vaults", json={"trustees": ["a@x.com"]})
        assert r.status_code == 422


class TestReconcileEndpoint:
    @pytest.mark.asyncio
    async def test_runs_sweep(self, client, store, make_vault, clock, t0):
        store.append(make_vault())
        clock.now = t0 + timedelta(days=31)

        r = await client.post("/api/reconcile")

        assert r.status_code == 200
        assert r.json()["activated"] == 1
        assert r.json()["finished_at"] is not None

    @pytest.mark.asyncio
    async def test_refuses_while_running(self, client):
        with dedup.single_flight(dedup.RECONCILE_KEY):
            r = await client.post("/api/reconcile")
            health = await client.get("/health")
        assert r.status_code == 409
        assert health.json()["reconcile_running"] is True
