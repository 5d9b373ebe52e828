"""
SQLite implementation of the auto-update repository.

Uses aiosqlite for async operations and provides async-safe access.
Can be easily replaced with PostgreSQL/MySQL implementations.
"""

from collections.abc import Collection
from datetime import datetime
from typing import Any

import aiosqlite

from autoupdate_common.models import (
    Intent,
    IntentExecution,
    UpgradeRecord,
    criteria_from_fields,
)
from autoupdate_common.repository import AutoUpdateRepository

_INTENT_COLUMNS = (
    "id, image_repo, stack_name, service_name, container_name, "
    "description, enabled, created_at, updated_at"
)

_HISTORY_COLUMNS = (
    "id, intent_id, container_id, container_name, source_endpoint_name, "
    "image_repo, old_image, old_version, new_image, new_version, status, "
    "upgrade_trigger, started_at, ended_at, duration_ms, error_message"
)

_EXECUTION_COLUMNS = (
    "id, intent_id, pass_id, status, trigger_type, containers_matched, "
    "containers_with_updates, containers_upgraded, containers_failed, "
    "error_message, started_at, completed_at, duration_ms"
)


def _parse_datetime(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SQLiteAutoUpdateRepository(AutoUpdateRepository):
    """
    SQLite-based auto-update storage implementation.

    Uses a single database file with multiple tables:
    - intents: Matching rules with their enabled state
    - upgrade_history: Append-only ledger of upgrade attempts
    - intent_executions: One summary row per intent per batch pass
    - upgrade_leases: Per-container upgrade leases shared by all processes
    """

    def __init__(self, db_path: str = "autoupdate.db"):
        """
        Initialize the SQLite repository.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = db_path
        self._connection: aiosqlite.Connection | None = None

    async def _get_connection(self) -> aiosqlite.Connection:
        """Get or create database connection."""
        if self._connection is None:
            self._connection = await aiosqlite.connect(self.db_path)
        return self._connection

    async def initialize(self) -> None:
        """
        Create database tables if they don't exist.

        Schema:
        - intents table: exactly one criteria variant per row (CHECK)
        - upgrade_history table: ledger rows in insertion order (seq);
          triggers reject UPDATE and DELETE
        - intent_executions table: per-intent pass summaries
        - upgrade_leases table: one row per held container lease
        """
        conn = await self._get_connection()

        await conn.execute("""
            CREATE TABLE IF NOT EXISTS intents (
                id TEXT PRIMARY KEY,
                image_repo TEXT,
                stack_name TEXT,
                service_name TEXT,
                container_name TEXT,
                description TEXT,
                enabled INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT,
                CHECK (
                    (image_repo IS NOT NULL)
                    + (stack_name IS NOT NULL AND service_name IS NOT NULL)
                    + (container_name IS NOT NULL) = 1
                )
            )
        """)

        await conn.execute("""
            CREATE TABLE IF NOT EXISTS upgrade_history (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT UNIQUE NOT NULL,
                intent_id TEXT,
                container_id TEXT NOT NULL,
                container_name TEXT NOT NULL,
                source_endpoint_name TEXT,
                image_repo TEXT,
                old_image TEXT,
                old_version TEXT,
                new_image TEXT,
                new_version TEXT,
                status TEXT NOT NULL CHECK (status IN ('success', 'failed')),
                upgrade_trigger TEXT NOT NULL DEFAULT 'batch',
                started_at TEXT NOT NULL,
                ended_at TEXT,
                duration_ms INTEGER,
                error_message TEXT
            )
        """)

        # Index on container_name for history filtering
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_upgrade_history_container_name
            ON upgrade_history(container_name)
        """)

        await conn.execute("""
            CREATE TRIGGER IF NOT EXISTS upgrade_history_no_update
            BEFORE UPDATE ON upgrade_history
            BEGIN
                SELECT RAISE(ABORT, 'upgrade_history is append-only');
            END
        """)

        await conn.execute("""
            CREATE TRIGGER IF NOT EXISTS upgrade_history_no_delete
            BEFORE DELETE ON upgrade_history
            BEGIN
                SELECT RAISE(ABORT, 'upgrade_history is append-only');
            END
        """)

        await conn.execute("""
            CREATE TABLE IF NOT EXISTS intent_executions (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT UNIQUE NOT NULL,
                intent_id TEXT NOT NULL,
                pass_id TEXT NOT NULL,
                status TEXT NOT NULL CHECK (status IN ('completed', 'partial', 'failed')),
                trigger_type TEXT NOT NULL DEFAULT 'batch',
                containers_matched INTEGER NOT NULL DEFAULT 0,
                containers_with_updates INTEGER NOT NULL DEFAULT 0,
                containers_upgraded INTEGER NOT NULL DEFAULT 0,
                containers_failed INTEGER NOT NULL DEFAULT 0,
                error_message TEXT,
                started_at TEXT NOT NULL,
                completed_at TEXT NOT NULL,
                duration_ms INTEGER
            )
        """)

        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_intent_executions_intent_id
            ON intent_executions(intent_id)
        """)

        await conn.execute("""
            CREATE TABLE IF NOT EXISTS upgrade_leases (
                key TEXT PRIMARY KEY,
                owner TEXT NOT NULL,
                acquired_at REAL NOT NULL
            )
        """)

        await conn.commit()

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    # ========================================================================
    # Intents
    # ========================================================================

    @staticmethod
    def _row_to_intent(row: Any) -> Intent:
        (
            intent_id,
            image_repo,
            stack_name,
            service_name,
            container_name,
            description,
            enabled,
            created_at,
            updated_at,
        ) = row
        return Intent(
            id=intent_id,
            criteria=criteria_from_fields(
                image_repo=image_repo,
                stack_name=stack_name,
                service_name=service_name,
                container_name=container_name,
            ),
            description=description,
            enabled=bool(enabled),
            created_at=datetime.fromisoformat(created_at),
            updated_at=_parse_datetime(updated_at),
        )

    async def create_intent(self, intent: Intent) -> None:
        """
        Persist a new intent.

        Args:
            intent: Intent object to persist
        """
        conn = await self._get_connection()
        fields = intent.criteria.to_fields()

        await conn.execute(
            f"INSERT INTO intents ({_INTENT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                intent.id,
                fields["image_repo"],
                fields["stack_name"],
                fields["service_name"],
                fields["container_name"],
                intent.description,
                1 if intent.enabled else 0,
                intent.created_at.isoformat(),
                intent.updated_at.isoformat() if intent.updated_at else None,
            ),
        )
        await conn.commit()

    async def get_intent(self, intent_id: str) -> Intent | None:
        conn = await self._get_connection()

        cursor = await conn.execute(
            f"SELECT {_INTENT_COLUMNS} FROM intents WHERE id = ?", (intent_id,)
        )
        row = await cursor.fetchone()

        if row is None:
            return None
        return self._row_to_intent(row)

    async def list_intents(self, enabled_only: bool = False) -> list[Intent]:
        conn = await self._get_connection()

        sql = f"SELECT {_INTENT_COLUMNS} FROM intents"
        if enabled_only:
            sql += " WHERE enabled = 1"
        sql += " ORDER BY rowid"

        cursor = await conn.execute(sql)
        rows = await cursor.fetchall()
        return [self._row_to_intent(row) for row in rows]

    async def set_intent_enabled(
        self, intent_id: str, enabled: bool, updated_at: datetime
    ) -> bool:
        conn = await self._get_connection()

        cursor = await conn.execute(
            "UPDATE intents SET enabled = ?, updated_at = ? WHERE id = ?",
            (1 if enabled else 0, updated_at.isoformat(), intent_id),
        )
        await conn.commit()
        return cursor.rowcount > 0

    async def delete_intent(self, intent_id: str) -> bool:
        conn = await self._get_connection()

        cursor = await conn.execute("DELETE FROM intents WHERE id = ?", (intent_id,))
        await conn.commit()
        return cursor.rowcount > 0

    # ========================================================================
    # Upgrade ledger
    # ========================================================================

    @staticmethod
    def _row_to_record(row: Any) -> UpgradeRecord:
        (
            record_id,
            intent_id,
            container_id,
            container_name,
            source_endpoint_name,
            image_repo,
            old_image,
            old_version,
            new_image,
            new_version,
            status,
            trigger,
            started_at,
            ended_at,
            duration_ms,
            error_message,
        ) = row
        return UpgradeRecord(
            id=record_id,
            intent_id=intent_id,
            container_id=container_id,
            container_name=container_name,
            source_endpoint_name=source_endpoint_name,
            image_repo=image_repo,
            old_image=old_image,
            old_version=old_version,
            new_image=new_image,
            new_version=new_version,
            status=status,
            trigger=trigger,
            started_at=datetime.fromisoformat(started_at),
            ended_at=_parse_datetime(ended_at),
            duration_ms=duration_ms,
            error_message=error_message,
        )

    async def append_upgrade_record(self, record: UpgradeRecord) -> None:
        """
        Append an upgrade attempt to the ledger.

        Args:
            record: Completed or failed upgrade attempt
        """
        conn = await self._get_connection()

        await conn.execute(
            f"""
            INSERT INTO upgrade_history ({_HISTORY_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.id,
                record.intent_id,
                record.container_id,
                record.container_name,
                record.source_endpoint_name,
                record.image_repo,
                record.old_image,
                record.old_version,
                record.new_image,
                record.new_version,
                record.status,
                record.trigger,
                record.started_at.isoformat(),
                record.ended_at.isoformat() if record.ended_at else None,
                record.duration_ms,
                record.error_message,
            ),
        )
        await conn.commit()

    async def query_upgrade_history(
        self,
        container_name: str | None = None,
        status: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[UpgradeRecord]:
        """
        Query ledger records in insertion order.

        Args:
            container_name: Substring filter on the container name
            status: Exact status filter
            limit: Maximum number of records (None for all)
            offset: Number of matching records to skip

        Returns:
            List of UpgradeRecord objects
        """
        conn = await self._get_connection()

        # Build dynamic SQL based on the filters given
        conditions = []
        params: list[Any] = []

        if container_name:
            conditions.append("container_name LIKE ?")
            params.append(f"%{container_name}%")

        if status:
            conditions.append("status = ?")
            params.append(status)

        sql = f"SELECT {_HISTORY_COLUMNS} FROM upgrade_history"
        if conditions:
            sql += f" WHERE {' AND '.join(conditions)}"
        sql += " ORDER BY seq LIMIT ? OFFSET ?"
        params.extend([limit if limit is not None else -1, max(0, offset)])

        cursor = await conn.execute(sql, params)
        rows = await cursor.fetchall()
        return [self._row_to_record(row) for row in rows]

    async def get_upgrade_record(self, record_id: str) -> UpgradeRecord | None:
        conn = await self._get_connection()

        cursor = await conn.execute(
            f"SELECT {_HISTORY_COLUMNS} FROM upgrade_history WHERE id = ?",
            (record_id,),
        )
        row = await cursor.fetchone()

        if row is None:
            return None
        return self._row_to_record(row)

    async def get_upgrade_stats(
        self, endpoints: Collection[str] | None = None
    ) -> dict[str, Any]:
        conn = await self._get_connection()

        where = ""
        params: list[Any] = []
        if endpoints:
            names = sorted(endpoints)
            where = f" WHERE source_endpoint_name IN ({', '.join('?' for _ in names)})"
            params.extend(names)

        cursor = await conn.execute(
            """
            SELECT
                COUNT(*),
                SUM(CASE WHEN status = 'success' THEN 1 ELSE 0 END),
                SUM(CASE WHEN status = 'failed' THEN 1 ELSE 0 END),
                AVG(duration_ms),
                MIN(started_at),
                MAX(started_at)
            FROM upgrade_history"""
            + where,
            params,
        )
        row = await cursor.fetchone()
        total, success_count, failed_count, avg_duration, first_at, last_at = row

        return {
            "total": total or 0,
            "success_count": success_count or 0,
            "failed_count": failed_count or 0,
            "avg_duration_ms": round(avg_duration) if avg_duration is not None else None,
            "first_upgrade_at": first_at,
            "last_upgrade_at": last_at,
        }

    # ========================================================================
    # Intent executions
    # ========================================================================

    async def append_intent_execution(self, execution: IntentExecution) -> None:
        conn = await self._get_connection()

        await conn.execute(
            f"INSERT INTO intent_executions ({_EXECUTION_COLUMNS}) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                execution.id,
                execution.intent_id,
                execution.pass_id,
                execution.status,
                execution.trigger,
                execution.containers_matched,
                execution.containers_with_updates,
                execution.containers_upgraded,
                execution.containers_failed,
                execution.error_message,
                execution.started_at.isoformat(),
                execution.completed_at.isoformat(),
                execution.duration_ms,
            ),
        )
        await conn.commit()

    async def list_intent_executions(
        self, intent_id: str, limit: int = 50
    ) -> list[IntentExecution]:
        conn = await self._get_connection()

        cursor = await conn.execute(
            f"SELECT {_EXECUTION_COLUMNS} FROM intent_executions "
            "WHERE intent_id = ? ORDER BY seq DESC LIMIT ?",
            (intent_id, limit),
        )
        rows = await cursor.fetchall()

        return [
            IntentExecution(
                id=row[0],
                intent_id=row[1],
                pass_id=row[2],
                status=row[3],
                trigger=row[4],
                containers_matched=row[5],
                containers_with_updates=row[6],
                containers_upgraded=row[7],
                containers_failed=row[8],
                error_message=row[9],
                started_at=datetime.fromisoformat(row[10]),
                completed_at=datetime.fromisoformat(row[11]),
                duration_ms=row[12],
            )
            for row in rows
        ]

    # ========================================================================
    # Upgrade leases
    # ========================================================================

    async def try_acquire_lease(
        self, key: str, owner: str, now: datetime, stale_before: datetime
    ) -> bool:
        conn = await self._get_connection()

        # Reclaim a lease whose holder crashed or hung
        await conn.execute(
            "DELETE FROM upgrade_leases WHERE key = ? AND acquired_at < ?",
            (key, stale_before.timestamp()),
        )

        cursor = await conn.execute(
            "INSERT OR IGNORE INTO upgrade_leases (key, owner, acquired_at) VALUES (?, ?, ?)",
            (key, owner, now.timestamp()),
        )
        await conn.commit()
        return cursor.rowcount == 1

    async def refresh_lease(self, key: str, owner: str, now: datetime) -> bool:
        conn = await self._get_connection()

        cursor = await conn.execute(
            "UPDATE upgrade_leases SET acquired_at = ? WHERE key = ? AND owner = ?",
            (now.timestamp(), key, owner),
        )
        await conn.commit()
        return cursor.rowcount == 1

    async def release_lease(self, key: str, owner: str) -> None:
        conn = await self._get_connection()

        await conn.execute(
            "DELETE FROM upgrade_leases WHERE key = ? AND owner = ?", (key, owner)
        )
        await conn.commit()

    async def get_lease_owner(self, key: str) -> str | None:
        conn = await self._get_connection()

        cursor = await conn.execute(
            "SELECT owner FROM upgrade_leases WHERE key = ?", (key,)
        )
        row = await cursor.fetchone()
        return row[0] if row else None
