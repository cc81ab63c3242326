"""
Root-level shared test fixtures.

Inherited by the vault, notify and engine suites and the top-level tests/.
"""

from __future__ import annotations

import os
import uuid
from datetime import UTC, datetime

import pytest

from keeper.config import reset_config
from keeper.engine import dedup
from keeper.notify.port import set_telegram_sender
from keeper.vault.models import Vault

T0 = datetime(2026, 1, 1, 9, 0, tzinfo=UTC)


@pytest.fixture(autouse=True)
def _reset_singletons():
    """Module-level state must not leak between tests."""
    reset_config()
    dedup.clear()
    set_telegram_sender(None)
    yield
    reset_config()
    dedup.clear()
    set_telegram_sender(None)


@pytest.fixture
def test_prefix():
    """Unique prefix for test isolation."""
    return f"test_{uuid.uuid4().hex[:8]}"


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every KEEPER_* variable so defaults apply."""
    for key in list(os.environ):
        if key.startswith("KEEPER_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def make_vault(test_prefix):
    """Factory for Vault rows with sensible defaults, created at T0."""

    def _make(**overrides) -> Vault:
        fields = {
            "id": f"VAULT-{test_prefix}-{uuid.uuid4().hex[:6]}",
            "owner_email": "owner@example.com",
            "owner_contact_ref": "1001",
            "document_ref": "doc-1",
            "document_url": "https://docs.google.com/document/d/doc-1/edit",
            "trustees": ["t1@example.com", "t2@example.com"],
            "created_at": T0,
            "last_checkin_at": T0,
        }
        fields.update(overrides)
        return Vault(**fields)

    return _make


@pytest.fixture
def t0() -> datetime:
    """Creation time used by make_vault."""
    return T0
