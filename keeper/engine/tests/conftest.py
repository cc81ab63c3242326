"""
Test fixtures for the lifecycle engine.

- In-memory vault store, recording notifier, fake document service
- A settable clock so sweeps can be replayed at exact offsets from T0
"""

from __future__ import annotations

from datetime import datetime

import pytest

from keeper.config import Config, TelegramConfig
from keeper.engine.lifecycle import VaultLifecycleEngine
from keeper.notify.drive import CreatedDocument, document_url
from keeper.notify.port import RecordingNotifier
from keeper.vault.store import MemoryVaultStore

# make_vault and t0 are inherited from the root conftest.py


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeDocuments:
    def __init__(self) -> None:
        self.created: list[tuple[str, str]] = []
        self.fail_with: Exception | None = None

    async def create_document(self, title: str, content: str) -> CreatedDocument:
        if self.fail_with is not None:
            raise self.fail_with
        self.created.append((title, content))
        doc_id = f"doc-{len(self.created)}"
        return CreatedDocument(id=doc_id, url=document_url(doc_id))


@pytest.fixture
def keeper_config() -> Config:
    return Config(
        owner_email="owner@example.com",
        base_url="https://keeper.test",
        telegram=TelegramConfig(bot_token="123456:TEST-token"),
    )


@pytest.fixture
def store() -> MemoryVaultStore:
    return MemoryVaultStore()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def documents() -> FakeDocuments:
    return FakeDocuments()


@pytest.fixture
def clock(t0) -> FakeClock:
    return FakeClock(t0)


@pytest.fixture
def engine(keeper_config, store, notifier, documents, clock) -> VaultLifecycleEngine:
    return VaultLifecycleEngine(keeper_config, store, notifier, documents=documents, clock=clock)
