"""SQLite conflict log mixin."""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from typing import TYPE_CHECKING

from coach_sync.storage.sqlite_row_mappers import row_to_conflict
from coach_sync.utils.timeutils import format_timestamp

if TYPE_CHECKING:
    import aiosqlite

    from coach_sync.core.conflicts import ConflictLogEntry


class SQLiteConflictLogMixin:
    """Mixin persisting resolver decisions until they reach the remote log."""

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

    async def record_conflict(self, entry: ConflictLogEntry) -> int:
        async with self._writing() as conn:
            cursor = await conn.execute(
                """INSERT INTO conflict_log
                   (owner_id, entity_type, entity_id, conflict_type, resolution,
                    local_timestamp, remote_timestamp, resolved_at, uploaded)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    entry.owner_id,
                    entry.entity_type,
                    entry.entity_id,
                    entry.conflict_type.value,
                    entry.resolution.value,
                    format_timestamp(entry.local_timestamp),
                    format_timestamp(entry.remote_timestamp),
                    format_timestamp(entry.resolved_at),
                    1 if entry.uploaded else 0,
                ),
            )
            return cursor.lastrowid or 0

    async def list_conflicts(
        self,
        limit: int = 50,
        only_not_uploaded: bool = False,
    ) -> list[ConflictLogEntry]:
        safe_limit = min(limit, 10000)
        query = "SELECT * FROM conflict_log"
        if only_not_uploaded:
            query += " WHERE uploaded = 0"
        query += " ORDER BY id DESC LIMIT ?"

        async with self._reading() as conn:
            async with conn.execute(query, (safe_limit,)) as cursor:
                rows = await cursor.fetchall()
            return [row_to_conflict(row) for row in rows]

    async def mark_conflicts_uploaded(self, ids: list[int]) -> int:
        if not ids:
            return 0
        placeholders = ",".join("?" for _ in ids)
        async with self._writing() as conn:
            cursor = await conn.execute(
                f"UPDATE conflict_log SET uploaded = 1 WHERE id IN ({placeholders})",
                list(ids),
            )
            return cursor.rowcount
