"""SQLite cached-entity operations mixin."""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from typing import TYPE_CHECKING, Any

from coach_sync.storage.sqlite_row_mappers import entity_to_params, row_to_entity

if TYPE_CHECKING:
    import aiosqlite

    from coach_sync.core.entities import CachedEntity, EntityKind
    from coach_sync.storage.base import EntityPredicate


class SQLiteEntityMixin:
    """Mixin providing cached entity CRUD for the replica."""

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

    async def upsert(self, entity: CachedEntity) -> None:
        async with self._writing() as conn:
            # OR REPLACE also evicts the owner's other profile row through
            # the partial unique index on owner_id.
            await conn.execute(
                """INSERT OR REPLACE INTO cached_entities
                   (kind, remote_id, owner_id, parent_id, payload, remote_updated_at,
                    local_edited_at, cached_at, sync_status, deleted)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                entity_to_params(entity),
            )

    async def get(self, kind: EntityKind, remote_id: str) -> CachedEntity | None:
        async with self._reading() as conn:
            async with conn.execute(
                "SELECT * FROM cached_entities WHERE kind = ? AND remote_id = ?",
                (kind.value, remote_id),
            ) as cursor:
                row = await cursor.fetchone()
                return row_to_entity(row) if row else None

    async def get_profile(self, owner_id: str) -> CachedEntity | None:
        async with self._reading() as conn:
            async with conn.execute(
                "SELECT * FROM cached_entities WHERE kind = 'context_profile' AND owner_id = ?",
                (owner_id,),
            ) as cursor:
                row = await cursor.fetchone()
                return row_to_entity(row) if row else None

    async def list(
        self,
        kind: EntityKind,
        predicate: EntityPredicate | None = None,
        *,
        owner_id: str | None = None,
        parent_id: str | None = None,
        include_deleted: bool = False,
    ) -> list[CachedEntity]:
        query = "SELECT * FROM cached_entities WHERE kind = ?"
        params: list[Any] = [kind.value]
        if owner_id is not None:
            query += " AND owner_id = ?"
            params.append(owner_id)
        if parent_id is not None:
            query += " AND parent_id = ?"
            params.append(parent_id)
        if not include_deleted:
            query += " AND deleted = 0"
        query += " ORDER BY remote_updated_at ASC, remote_id ASC"

        async with self._reading() as conn:
            async with conn.execute(query, params) as cursor:
                rows = await cursor.fetchall()
            entities = [row_to_entity(row) for row in rows]

        if predicate is not None:
            entities = [e for e in entities if predicate(e)]
        return entities

    async def delete(self, kind: EntityKind, remote_id: str) -> bool:
        async with self._writing() as conn:
            cursor = await conn.execute(
                "DELETE FROM cached_entities WHERE kind = ? AND remote_id = ?",
                (kind.value, remote_id),
            )
            return cursor.rowcount > 0

    async def delete_where(
        self,
        kind: EntityKind,
        *,
        owner_id: str | None = None,
        parent_id: str | None = None,
    ) -> int:
        query = "DELETE FROM cached_entities WHERE kind = ?"
        params: list[Any] = [kind.value]
        if owner_id is not None:
            query += " AND owner_id = ?"
            params.append(owner_id)
        if parent_id is not None:
            query += " AND parent_id = ?"
            params.append(parent_id)

        async with self._writing() as conn:
            cursor = await conn.execute(query, params)
            return cursor.rowcount

    async def entity_counts(self) -> dict[str, dict[str, int]]:
        counts: dict[str, dict[str, int]] = {}
        async with self._reading() as conn:
            async with conn.execute(
                """SELECT kind, sync_status, COUNT(*) AS n
                   FROM cached_entities GROUP BY kind, sync_status"""
            ) as cursor:
                async for row in cursor:
                    counts.setdefault(row["kind"], {})[row["sync_status"]] = row["n"]
        return counts
