"""SQLite pending-operation queue mixin."""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from dataclasses import replace
from datetime import datetime
from typing import TYPE_CHECKING, Any

from coach_sync.core.operations import OperationStatus
from coach_sync.storage.base import encode_payload
from coach_sync.storage.sqlite_row_mappers import row_to_operation
from coach_sync.utils.timeutils import format_timestamp

if TYPE_CHECKING:
    import aiosqlite

    from coach_sync.core.entities import EntityKind
    from coach_sync.core.operations import OperationKind, PendingOperation


class SQLitePendingOpsMixin:
    """Mixin persisting the offline write queue.

    ``seq`` is an AUTOINCREMENT key, so replay order survives restarts and
    sequence numbers are never reused.
    """

    # ------------------------------------------------------------------
    # Protocol stubs, satisfied by SQLiteReplicaStore at runtime.
    # ------------------------------------------------------------------

    def _writing(self) -> AbstractAsyncContextManager[aiosqlite.Connection]:
        raise NotImplementedError

    def _reading(self) -> AbstractAsyncContextManager[aiosqlite.Connection]:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def add_operation(self, operation: PendingOperation) -> PendingOperation:
        async with self._writing() as conn:
            cursor = await conn.execute(
                """INSERT INTO pending_operations
                   (operation_id, kind, entity_kind, entity_id, owner_id, payload,
                    base_remote_updated_at, enqueued_at, retry_count, status, last_error)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    operation.operation_id,
                    operation.kind.value,
                    operation.entity_kind.value,
                    operation.entity_id,
                    operation.owner_id,
                    encode_payload(operation.payload),
                    format_timestamp(operation.base_remote_updated_at),
                    format_timestamp(operation.enqueued_at),
                    operation.retry_count,
                    operation.status.value,
                    operation.last_error,
                ),
            )
            sequence = cursor.lastrowid or 0

        return replace(operation, sequence=sequence)

    async def list_operations(
        self,
        status: OperationStatus | None = None,
        limit: int = 100,
    ) -> list[PendingOperation]:
        safe_limit = min(limit, 10000)
        wanted = status or OperationStatus.PENDING
        async with self._reading() as conn:
            async with conn.execute(
                "SELECT * FROM pending_operations WHERE status = ? ORDER BY seq ASC LIMIT ?",
                (wanted.value, safe_limit),
            ) as cursor:
                rows = await cursor.fetchall()
            return [row_to_operation(row) for row in rows]

    async def get_operation(self, operation_id: str) -> PendingOperation | None:
        async with self._reading() as conn:
            async with conn.execute(
                "SELECT * FROM pending_operations WHERE operation_id = ?",
                (operation_id,),
            ) as cursor:
                row = await cursor.fetchone()
                return row_to_operation(row) if row else None

    async def complete_operation(self, operation_id: str) -> bool:
        async with self._writing() as conn:
            cursor = await conn.execute(
                "DELETE FROM pending_operations WHERE operation_id = ?",
                (operation_id,),
            )
            return cursor.rowcount > 0

    async def record_operation_failure(
        self, operation_id: str, error: str
    ) -> PendingOperation | None:
        async with self._writing() as conn:
            await conn.execute(
                """UPDATE pending_operations
                   SET retry_count = retry_count + 1, last_error = ?
                   WHERE operation_id = ?""",
                (error, operation_id),
            )
        return await self.get_operation(operation_id)

    async def dead_letter_operation(self, operation_id: str, error: str) -> bool:
        async with self._writing() as conn:
            cursor = await conn.execute(
                """UPDATE pending_operations SET status = ?, last_error = ?
                   WHERE operation_id = ?""",
                (OperationStatus.DEAD_LETTER.value, error, operation_id),
            )
            return cursor.rowcount > 0

    async def rebase_operations(
        self,
        entity_kind: EntityKind,
        entity_id: str,
        base_remote_updated_at: datetime,
    ) -> int:
        async with self._writing() as conn:
            cursor = await conn.execute(
                """UPDATE pending_operations SET base_remote_updated_at = ?
                   WHERE entity_kind = ? AND entity_id = ? AND status = ?""",
                (
                    format_timestamp(base_remote_updated_at),
                    entity_kind.value,
                    entity_id,
                    OperationStatus.PENDING.value,
                ),
            )
            return cursor.rowcount

    async def discard_operations(self, entity_kind: EntityKind, entity_id: str) -> int:
        async with self._writing() as conn:
            cursor = await conn.execute(
                """DELETE FROM pending_operations
                   WHERE entity_kind = ? AND entity_id = ? AND status = ?""",
                (entity_kind.value, entity_id, OperationStatus.PENDING.value),
            )
            return cursor.rowcount

    async def has_pending_for_entity(
        self, entity_kind: EntityKind, entity_id: str, *, exclude: str | None = None
    ) -> bool:
        async with self._reading() as conn:
            async with conn.execute(
                """SELECT 1 FROM pending_operations
                   WHERE entity_kind = ? AND entity_id = ? AND status = ?
                     AND operation_id != ? LIMIT 1""",
                (entity_kind.value, entity_id, OperationStatus.PENDING.value, exclude or ""),
            ) as cursor:
                return await cursor.fetchone() is not None

    async def has_pending_operation(self, kind: OperationKind, owner_id: str) -> bool:
        async with self._reading() as conn:
            async with conn.execute(
                """SELECT 1 FROM pending_operations
                   WHERE kind = ? AND owner_id = ? AND status = ? LIMIT 1""",
                (kind.value, owner_id, OperationStatus.PENDING.value),
            ) as cursor:
                return await cursor.fetchone() is not None

    async def operation_stats(self) -> dict[str, Any]:
        async with self._reading() as conn:
            async with conn.execute(
                """SELECT
                    SUM(CASE WHEN status = 'pending' THEN 1 ELSE 0 END) AS pending,
                    SUM(CASE WHEN status = 'dead_letter' THEN 1 ELSE 0 END) AS dead_letter,
                    MIN(CASE WHEN status = 'pending' THEN enqueued_at END) AS oldest_pending,
                    MAX(seq) AS last_sequence
                   FROM pending_operations"""
            ) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return {"pending": 0, "dead_letter": 0, "oldest_pending": None, "last_sequence": 0}
        return {
            "pending": row["pending"] or 0,
            "dead_letter": row["dead_letter"] or 0,
            "oldest_pending": row["oldest_pending"],
            "last_sequence": row["last_sequence"] or 0,
        }
