"""
PostgreSQL vault store.

One keyed row per vault in ``vaults``; every write is a single-row UPDATE that
bumps ``version`` so callers can detect a concurrent writer. Lifecycle events
go to ``vault_events`` on a best-effort basis.
Follows the get_connection() + RealDictCursor pattern used across the DALs.
"""

from __future__ import annotations

import logging
from typing import Any

import psycopg2
from psycopg2.extras import Json, RealDictCursor

from keeper.db.connection import get_connection
from keeper.errors import StoreUnavailableError, VaultExistsError
from keeper.vault.models import Vault, VaultStatus, parse_trustees
from keeper.vault.store import VaultStore, _check_fields

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS vaults (
    row_seq               BIGSERIAL,
    vault_id              TEXT PRIMARY KEY,
    owner_email           TEXT NOT NULL,
    owner_contact_ref     TEXT NOT NULL DEFAULT '',
    document_id           TEXT NOT NULL,
    document_url          TEXT NOT NULL,
    attachment_ref        TEXT NOT NULL DEFAULT '',
    trustees_csv          TEXT NOT NULL DEFAULT '',
    checkin_interval_days INTEGER NOT NULL DEFAULT 30,
    grace_hours           INTEGER NOT NULL DEFAULT 12,
    last_checkin_at       TIMESTAMPTZ,
    status                TEXT NOT NULL DEFAULT 'ACTIVE'
                          CHECK (status IN ('ACTIVE', 'DEACTIVATED', 'ACTIVATED')),
    created_at            TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    last_reminder_at      TIMESTAMPTZ,
    activated_notified_at TIMESTAMPTZ,
    version               INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_vaults_contact ON vaults (owner_contact_ref);
CREATE INDEX IF NOT EXISTS idx_vaults_status ON vaults (status);

CREATE TABLE IF NOT EXISTS vault_events (
    id         BIGSERIAL PRIMARY KEY,
    vault_id   TEXT NOT NULL,
    event_type TEXT NOT NULL,
    details    JSONB,
    ts         TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_vault_events_vault ON vault_events (vault_id, ts);
"""

_COLUMNS = (
    "vault_id, owner_email, owner_contact_ref, document_id, document_url, "
    "attachment_ref, trustees_csv, checkin_interval_days, grace_hours, "
    "last_checkin_at, status, created_at, last_reminder_at, "
    "activated_notified_at, version"
)


def _row_to_vault(row: dict[str, Any]) -> Vault:
    created_at = row["created_at"]
    return Vault(
        id=row["vault_id"],
        owner_email=row["owner_email"],
        owner_contact_ref=row["owner_contact_ref"] or "",
        document_ref=row["document_id"],
        document_url=row["document_url"],
        attachment_ref=row["attachment_ref"] or "",
        trustees=parse_trustees(row["trustees_csv"]),
        checkin_interval_days=row["checkin_interval_days"],
        grace_hours=row["grace_hours"],
        # Rows written before check-in tracking existed fall back to creation time
        last_checkin_at=row["last_checkin_at"] or created_at,
        status=VaultStatus(row["status"]),
        created_at=created_at,
        last_reminder_at=row["last_reminder_at"],
        activated_notified_at=row["activated_notified_at"],
        version=row["version"],
    )


def _db_value(value: Any) -> Any:
    if isinstance(value, VaultStatus):
        return value.value
    return value


class PostgresVaultStore(VaultStore):
    """VaultStore backed by the ``vaults`` table."""

    def append(self, vault: Vault) -> None:
        try:
            with get_connection() as conn:
                cur = conn.cursor()
                cur.execute(
                    f"""
                    INSERT INTO vaults ({_COLUMNS})
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        vault.id,
                        vault.owner_email,
                        vault.owner_contact_ref,
                        vault.document_ref,
                        vault.document_url,
                        vault.attachment_ref,
                        vault.trustees_csv,
                        vault.checkin_interval_days,
                        vault.grace_hours,
                        vault.last_checkin_at,
                        vault.status.value,
                        vault.created_at,
                        vault.last_reminder_at,
                        vault.activated_notified_at,
                        vault.version,
                    ),
                )
        except psycopg2.IntegrityError as e:
            raise VaultExistsError(vault.id) from e
        except psycopg2.OperationalError as e:
            raise StoreUnavailableError("append", e) from e

    def get(self, vault_id: str) -> Vault | None:
        try:
            with get_connection() as conn:
                cur = conn.cursor(cursor_factory=RealDictCursor)
                cur.execute(f"SELECT {_COLUMNS} FROM vaults WHERE vault_id = %s", (vault_id,))
                row = cur.fetchone()
        except psycopg2.OperationalError as e:
            raise StoreUnavailableError("get", e) from e
        return _row_to_vault(row) if row else None

    def scan_all(self) -> list[Vault]:
        try:
            with get_connection() as conn:
                cur = conn.cursor(cursor_factory=RealDictCursor)
                cur.execute(f"SELECT {_COLUMNS} FROM vaults ORDER BY row_seq")
                rows = cur.fetchall()
        except psycopg2.OperationalError as e:
            raise StoreUnavailableError("scan_all", e) from e
        return [_row_to_vault(r) for r in rows]

    def find_by_contact(self, owner_contact_ref: str) -> list[Vault]:
        if not owner_contact_ref:
            return []
        try:
            with get_connection() as conn:
                cur = conn.cursor(cursor_factory=RealDictCursor)
                cur.execute(
                    f"SELECT {_COLUMNS} FROM vaults WHERE owner_contact_ref = %s ORDER BY row_seq",
                    (owner_contact_ref,),
                )
                rows = cur.fetchall()
        except psycopg2.OperationalError as e:
            raise StoreUnavailableError("find_by_contact", e) from e
        return [_row_to_vault(r) for r in rows]

    def update_fields(
        self,
        vault_id: str,
        changes: dict[str, Any],
        *,
        expected_version: int | None = None,
    ) -> bool:
        _check_fields(changes)
        if not changes:
            return True

        assignments = [f"{name} = %s" for name in changes]
        values: list[Any] = [_db_value(v) for v in changes.values()]
        sql = f"UPDATE vaults SET {', '.join(assignments)}, version = version + 1 WHERE vault_id = %s"
        values.append(vault_id)
        if expected_version is not None:
            sql += " AND version = %s"
            values.append(expected_version)

        try:
            with get_connection() as conn:
                cur = conn.cursor()
                cur.execute(sql, values)
                return cur.rowcount > 0
        except psycopg2.OperationalError as e:
            raise StoreUnavailableError("update_fields", e) from e

    def record_event(self, vault_id: str, event_type: str, details: dict | None = None) -> None:
        try:
            with get_connection() as conn:
                cur = conn.cursor()
                cur.execute(
                    "INSERT INTO vault_events (vault_id, event_type, details) VALUES (%s, %s, %s)",
                    (vault_id, event_type, Json(details) if details else None),
                )
        except Exception as e:
            logger.warning("Vault event %s for %s not recorded: %s", event_type, vault_id, e)


def apply_schema() -> None:
    """Create tables if missing."""
    try:
        with get_connection() as conn:
            cur = conn.cursor()
            cur.execute(SCHEMA_SQL)
    except psycopg2.OperationalError as e:
        raise StoreUnavailableError("apply_schema", e) from e
    logger.info("Vault schema applied")
