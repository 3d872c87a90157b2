"""Pending operation data structures for the offline write queue."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from coach_sync.core.entities import EntityKind
from coach_sync.utils.timeutils import format_timestamp, parse_timestamp, utcnow


class OperationKind(StrEnum):
    """Mutations that can be queued while offline."""

    UPDATE_PROFILE = "update_profile"
    DELETE_CONVERSATION = "delete_conversation"
    DELETE_ALL_CONVERSATIONS = "delete_all_conversations"


class OperationStatus(StrEnum):
    PENDING = "pending"
    DEAD_LETTER = "dead_letter"


@dataclass(frozen=True)
class PendingOperation:
    """
    A remote mutation waiting for connectivity.

    Replay order is ``sequence`` (assigned by the store on enqueue), which
    follows ``enqueued_at``.

    Attributes:
        operation_id: Stable identifier
        kind: What to replay
        entity_kind: Partition of the target entity
        entity_id: Target entity (owner id for owner-wide operations)
        owner_id: Owning user
        payload: Full mutation to replay
        base_remote_updated_at: Remote version the mutation was made against
        enqueued_at: When the mutation was queued
        sequence: Store-assigned FIFO position (0 until persisted)
        retry_count: Failed replay attempts so far
        status: pending or dead_letter
        last_error: Message from the last failed attempt
    """

    operation_id: str
    kind: OperationKind
    entity_kind: EntityKind
    entity_id: str
    owner_id: str
    payload: dict[str, Any] = field(default_factory=dict)
    base_remote_updated_at: datetime | None = None
    enqueued_at: datetime = field(default_factory=utcnow)
    sequence: int = 0
    retry_count: int = 0
    status: OperationStatus = OperationStatus.PENDING
    last_error: str | None = None

    @classmethod
    def create(
        cls,
        kind: OperationKind,
        entity_kind: EntityKind,
        entity_id: str,
        owner_id: str,
        payload: dict[str, Any] | None = None,
        base_remote_updated_at: datetime | None = None,
        enqueued_at: datetime | None = None,
    ) -> PendingOperation:
        """Factory for a fresh, not yet persisted operation."""
        return cls(
            operation_id=uuid4().hex,
            kind=kind,
            entity_kind=entity_kind,
            entity_id=entity_id,
            owner_id=owner_id,
            payload=dict(payload or {}),
            base_remote_updated_at=base_remote_updated_at,
            enqueued_at=enqueued_at or utcnow(),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "kind": self.kind.value,
            "entity_kind": self.entity_kind.value,
            "entity_id": self.entity_id,
            "owner_id": self.owner_id,
            "payload": self.payload,
            "base_remote_updated_at": format_timestamp(self.base_remote_updated_at),
            "enqueued_at": format_timestamp(self.enqueued_at),
            "sequence": self.sequence,
            "retry_count": self.retry_count,
            "status": self.status.value,
            "last_error": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PendingOperation:
        return cls(
            operation_id=str(data["operation_id"]),
            kind=OperationKind(data["kind"]),
            entity_kind=EntityKind(data["entity_kind"]),
            entity_id=str(data["entity_id"]),
            owner_id=str(data["owner_id"]),
            payload=dict(data.get("payload") or {}),
            base_remote_updated_at=parse_timestamp(data.get("base_remote_updated_at")),
            enqueued_at=parse_timestamp(data.get("enqueued_at")) or utcnow(),
            sequence=int(data.get("sequence", 0)),
            retry_count=int(data.get("retry_count", 0)),
            status=OperationStatus(data.get("status", OperationStatus.PENDING.value)),
            last_error=data.get("last_error"),
        )
