"""Row-to-model conversion functions for SQLite storage."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    import aiosqlite

from coach_sync.core.conflicts import ConflictLogEntry, ConflictType, Resolution
from coach_sync.core.entities import (
    CachedEntity,
    EntityKind,
    SyncStatus,
    local_edit_from,
    local_edit_timestamp,
)
from coach_sync.core.operations import OperationKind, OperationStatus, PendingOperation
from coach_sync.storage.base import encode_payload
from coach_sync.utils.timeutils import format_timestamp, parse_timestamp, utcnow


def row_to_entity(row: aiosqlite.Row) -> CachedEntity:
    """Convert database row to CachedEntity."""
    remote_updated_at = parse_timestamp(row["remote_updated_at"])
    if remote_updated_at is None:
        raise ValueError(f"cached {row['kind']} {row['remote_id']} has no remote_updated_at")
    return CachedEntity(
        kind=EntityKind(row["kind"]),
        remote_id=row["remote_id"],
        owner_id=row["owner_id"],
        parent_id=row["parent_id"],
        payload=json.loads(row["payload"]) if row["payload"] else {},
        remote_updated_at=remote_updated_at,
        local_edit=local_edit_from(row["local_edited_at"]),
        cached_at=parse_timestamp(row["cached_at"]) or utcnow(),
        sync_status=SyncStatus(row["sync_status"]),
        deleted=bool(row["deleted"]),
    )


def entity_to_params(entity: CachedEntity) -> tuple[Any, ...]:
    """Column values for an INSERT into cached_entities."""
    return (
        entity.kind.value,
        entity.remote_id,
        entity.owner_id,
        entity.parent_id,
        encode_payload(entity.payload),
        format_timestamp(entity.remote_updated_at),
        format_timestamp(local_edit_timestamp(entity.local_edit)),
        format_timestamp(entity.cached_at),
        entity.sync_status.value,
        1 if entity.deleted else 0,
    )


def row_to_operation(row: aiosqlite.Row) -> PendingOperation:
    """Convert database row to PendingOperation."""
    return PendingOperation(
        operation_id=row["operation_id"],
        kind=OperationKind(row["kind"]),
        entity_kind=EntityKind(row["entity_kind"]),
        entity_id=row["entity_id"],
        owner_id=row["owner_id"],
        payload=json.loads(row["payload"]) if row["payload"] else {},
        base_remote_updated_at=parse_timestamp(row["base_remote_updated_at"]),
        enqueued_at=parse_timestamp(row["enqueued_at"]) or utcnow(),
        sequence=int(row["seq"]),
        retry_count=int(row["retry_count"]),
        status=OperationStatus(row["status"]),
        last_error=row["last_error"],
    )


def row_to_conflict(row: aiosqlite.Row) -> ConflictLogEntry:
    """Convert database row to ConflictLogEntry."""
    return ConflictLogEntry(
        id=int(row["id"]),
        owner_id=row["owner_id"],
        entity_type=row["entity_type"],
        entity_id=row["entity_id"],
        conflict_type=ConflictType(row["conflict_type"]),
        resolution=Resolution(row["resolution"]),
        local_timestamp=parse_timestamp(row["local_timestamp"]),
        remote_timestamp=parse_timestamp(row["remote_timestamp"]),
        resolved_at=parse_timestamp(row["resolved_at"]) or utcnow(),
        uploaded=bool(row["uploaded"]),
    )
