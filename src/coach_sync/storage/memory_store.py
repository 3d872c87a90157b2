"""In-memory replica backend."""

from __future__ import annotations

import itertools
from dataclasses import replace
from datetime import datetime
from typing import Any

from coach_sync.core.conflicts import ConflictLogEntry
from coach_sync.core.entities import CachedEntity, EntityKind
from coach_sync.core.operations import OperationKind, OperationStatus, PendingOperation
from coach_sync.storage.base import EntityPredicate, ReplicaStore, encode_payload
from coach_sync.utils.timeutils import format_timestamp


class InMemoryReplicaStore(ReplicaStore):
    """Dict-based replica for development and testing.

    Data is lost when the process exits.
    """

    def __init__(self) -> None:
        self._entities: dict[tuple[EntityKind, str], CachedEntity] = {}
        self._operations: dict[str, PendingOperation] = {}
        self._conflicts: dict[int, ConflictLogEntry] = {}
        self._sequence = itertools.count(1)
        self._conflict_ids = itertools.count(1)

    # ========== Entity Operations ==========

    async def upsert(self, entity: CachedEntity) -> None:
        encode_payload(entity.payload)
        if entity.kind == EntityKind.PROFILE:
            stale = [
                key
                for key, existing in self._entities.items()
                if existing.kind == EntityKind.PROFILE
                and existing.owner_id == entity.owner_id
                and existing.remote_id != entity.remote_id
            ]
            for key in stale:
                del self._entities[key]
        self._entities[(entity.kind, entity.remote_id)] = entity

    async def get(self, kind: EntityKind, remote_id: str) -> CachedEntity | None:
        return self._entities.get((kind, remote_id))

    async def get_profile(self, owner_id: str) -> CachedEntity | None:
        for entity in self._entities.values():
            if entity.kind == EntityKind.PROFILE and entity.owner_id == owner_id:
                return entity
        return None

    async def list(
        self,
        kind: EntityKind,
        predicate: EntityPredicate | None = None,
        *,
        owner_id: str | None = None,
        parent_id: str | None = None,
        include_deleted: bool = False,
    ) -> list[CachedEntity]:
        matches = [
            e
            for e in self._entities.values()
            if e.kind == kind
            and (owner_id is None or e.owner_id == owner_id)
            and (parent_id is None or e.parent_id == parent_id)
            and (include_deleted or not e.deleted)
            and (predicate is None or predicate(e))
        ]
        return sorted(matches, key=lambda e: (e.remote_updated_at, e.remote_id))

    async def delete(self, kind: EntityKind, remote_id: str) -> bool:
        return self._entities.pop((kind, remote_id), None) is not None

    async def delete_where(
        self,
        kind: EntityKind,
        *,
        owner_id: str | None = None,
        parent_id: str | None = None,
    ) -> int:
        doomed = [
            key
            for key, e in self._entities.items()
            if e.kind == kind
            and (owner_id is None or e.owner_id == owner_id)
            and (parent_id is None or e.parent_id == parent_id)
        ]
        for key in doomed:
            del self._entities[key]
        return len(doomed)

    async def clear(self) -> None:
        self._entities.clear()
        self._operations.clear()
        self._conflicts.clear()

    async def entity_counts(self) -> dict[str, dict[str, int]]:
        counts: dict[str, dict[str, int]] = {}
        for e in self._entities.values():
            by_status = counts.setdefault(e.kind.value, {})
            by_status[e.sync_status.value] = by_status.get(e.sync_status.value, 0) + 1
        return counts

    # ========== Pending Operation Queue ==========

    async def add_operation(self, operation: PendingOperation) -> PendingOperation:
        encode_payload(operation.payload)
        stored = replace(operation, sequence=next(self._sequence))
        self._operations[stored.operation_id] = stored
        return stored

    async def list_operations(
        self,
        status: OperationStatus | None = None,
        limit: int = 100,
    ) -> list[PendingOperation]:
        wanted = status or OperationStatus.PENDING
        ops = sorted(
            (op for op in self._operations.values() if op.status == wanted),
            key=lambda op: op.sequence,
        )
        return ops[:limit]

    async def get_operation(self, operation_id: str) -> PendingOperation | None:
        return self._operations.get(operation_id)

    async def complete_operation(self, operation_id: str) -> bool:
        return self._operations.pop(operation_id, None) is not None

    async def record_operation_failure(
        self, operation_id: str, error: str
    ) -> PendingOperation | None:
        op = self._operations.get(operation_id)
        if op is None:
            return None
        updated = replace(op, retry_count=op.retry_count + 1, last_error=error)
        self._operations[operation_id] = updated
        return updated

    async def dead_letter_operation(self, operation_id: str, error: str) -> bool:
        op = self._operations.get(operation_id)
        if op is None:
            return False
        self._operations[operation_id] = replace(
            op, status=OperationStatus.DEAD_LETTER, last_error=error
        )
        return True

    def _pending_for(self, entity_kind: EntityKind, entity_id: str) -> list[PendingOperation]:
        return [
            op
            for op in self._operations.values()
            if op.entity_kind == entity_kind
            and op.entity_id == entity_id
            and op.status == OperationStatus.PENDING
        ]

    async def rebase_operations(
        self,
        entity_kind: EntityKind,
        entity_id: str,
        base_remote_updated_at: datetime,
    ) -> int:
        ops = self._pending_for(entity_kind, entity_id)
        for op in ops:
            self._operations[op.operation_id] = replace(
                op, base_remote_updated_at=base_remote_updated_at
            )
        return len(ops)

    async def discard_operations(self, entity_kind: EntityKind, entity_id: str) -> int:
        ops = self._pending_for(entity_kind, entity_id)
        for op in ops:
            del self._operations[op.operation_id]
        return len(ops)

    async def has_pending_for_entity(
        self, entity_kind: EntityKind, entity_id: str, *, exclude: str | None = None
    ) -> bool:
        return any(
            op.operation_id != exclude for op in self._pending_for(entity_kind, entity_id)
        )

    async def has_pending_operation(self, kind: OperationKind, owner_id: str) -> bool:
        return any(
            op.kind == kind and op.owner_id == owner_id and op.status == OperationStatus.PENDING
            for op in self._operations.values()
        )

    async def operation_stats(self) -> dict[str, Any]:
        pending = [op for op in self._operations.values() if op.status == OperationStatus.PENDING]
        dead = [op for op in self._operations.values() if op.status == OperationStatus.DEAD_LETTER]
        oldest = min((op.enqueued_at for op in pending), default=None)
        return {
            "pending": len(pending),
            "dead_letter": len(dead),
            "oldest_pending": format_timestamp(oldest),
            "last_sequence": max((op.sequence for op in self._operations.values()), default=0),
        }

    # ========== Conflict Log ==========

    async def record_conflict(self, entry: ConflictLogEntry) -> int:
        conflict_id = next(self._conflict_ids)
        self._conflicts[conflict_id] = replace(entry, id=conflict_id)
        return conflict_id

    async def list_conflicts(
        self,
        limit: int = 50,
        only_not_uploaded: bool = False,
    ) -> list[ConflictLogEntry]:
        entries = [
            e for e in self._conflicts.values() if not (only_not_uploaded and e.uploaded)
        ]
        entries.sort(key=lambda e: e.id or 0, reverse=True)
        return entries[:limit]

    async def mark_conflicts_uploaded(self, ids: list[int]) -> int:
        marked = 0
        for conflict_id in ids:
            entry = self._conflicts.get(conflict_id)
            if entry is not None and not entry.uploaded:
                self._conflicts[conflict_id] = replace(entry, uploaded=True)
                marked += 1
        return marked
