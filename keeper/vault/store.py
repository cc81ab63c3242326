"""
Vault storage contract.

A store is a keyed table of vault rows. Each row carries a ``version``
counter; ``update_fields`` applies all given fields to one row atomically and
bumps the version, refusing the write when ``expected_version`` no longer
matches. There are no multi-row transactions.
"""

from __future__ import annotations

import copy
import logging
import threading
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from typing import Any

from keeper.errors import VaultExistsError
from keeper.vault.models import Vault

logger = logging.getLogger(__name__)

# Fields that may change after creation
MUTABLE_FIELDS = frozenset(
    {"last_checkin_at", "status", "last_reminder_at", "activated_notified_at"}
)


class VaultStore(ABC):
    """Durable collection of Vault rows."""

    @abstractmethod
    def append(self, vault: Vault) -> None:
        """Insert a new row. Raises VaultExistsError on a duplicate id."""

    @abstractmethod
    def get(self, vault_id: str) -> Vault | None:
        """Point read by id."""

    @abstractmethod
    def scan_all(self) -> list[Vault]:
        """All rows in insertion order."""

    @abstractmethod
    def update_fields(
        self,
        vault_id: str,
        changes: dict[str, Any],
        *,
        expected_version: int | None = None,
    ) -> bool:
        """Apply ``changes`` to one row. Returns False if missing or stale."""

    def update_field(
        self,
        vault_id: str,
        field_name: str,
        value: Any,
        *,
        expected_version: int | None = None,
    ) -> bool:
        return self.update_fields(
            vault_id, {field_name: value}, expected_version=expected_version
        )

    def record_event(self, vault_id: str, event_type: str, details: dict | None = None) -> None:
        """Append to the lifecycle event log. Must never raise."""

    def find_by_contact(self, owner_contact_ref: str) -> list[Vault]:
        return [v for v in self.scan_all() if v.belongs_to_contact(owner_contact_ref)]


def _check_fields(changes: dict[str, Any]) -> None:
    unknown = set(changes) - MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Immutable or unknown vault fields: {sorted(unknown)}")


class MemoryVaultStore(VaultStore):
    """In-process store. Rows are copied in and out so callers never alias."""

    def __init__(self) -> None:
        self._rows: dict[str, Vault] = {}
        self._lock = threading.Lock()
        self.events: list[dict[str, Any]] = []

    def append(self, vault: Vault) -> None:
        with self._lock:
            if vault.id in self._rows:
                raise VaultExistsError(vault.id)
            self._rows[vault.id] = copy.deepcopy(vault)

    def get(self, vault_id: str) -> Vault | None:
        with self._lock:
            row = self._rows.get(vault_id)
            return copy.deepcopy(row) if row else None

    def scan_all(self) -> list[Vault]:
        with self._lock:
            return [copy.deepcopy(v) for v in self._rows.values()]

    def update_fields(
        self,
        vault_id: str,
        changes: dict[str, Any],
        *,
        expected_version: int | None = None,
    ) -> bool:
        _check_fields(changes)
        with self._lock:
            row = self._rows.get(vault_id)
            if row is None:
                return False
            if expected_version is not None and row.version != expected_version:
                logger.debug(
                    "Version conflict on %s: expected %d, found %d",
                    vault_id,
                    expected_version,
                    row.version,
                )
                return False
            for name, value in changes.items():
                setattr(row, name, value)
            row.version += 1
            return True

    def record_event(self, vault_id: str, event_type: str, details: dict | None = None) -> None:
        self.events.append(
            {
                "vault_id": vault_id,
                "event_type": event_type,
                "details": details or {},
                "ts": datetime.now(UTC),
            }
        )
