"""Abstract base class for local replica backends."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING, Any

from coach_sync.errors import CacheError

if TYPE_CHECKING:
    from coach_sync.core.conflicts import ConflictLogEntry
    from coach_sync.core.entities import CachedEntity, EntityKind
    from coach_sync.core.operations import OperationKind, OperationStatus, PendingOperation

EntityPredicate = Callable[["CachedEntity"], bool]


def encode_payload(payload: dict[str, Any]) -> str:
    """Serialize a payload for the replica.

    Payloads must be JSON-native (str, int, float, bool, None, lists and
    dicts of those); anything else would come back as a different type, so it
    is rejected with CacheError.
    """
    try:
        return json.dumps(payload)
    except (TypeError, ValueError) as e:
        raise CacheError(f"Payload is not JSON-serializable: {e}") from e


class ReplicaStore(ABC):
    """
    Abstract interface for the on-device replica.

    Holds three things: cached entities keyed by ``(kind, remote_id)``, the
    durable pending-operation queue, and the local conflict log.

    Every mutation is idempotent. Implementations raise
    :class:`~coach_sync.errors.CacheError` on any persistence failure,
    including a payload that is not JSON-native.
    """

    async def initialize(self) -> None:  # noqa: B027
        """Open connections and create the schema. No-op by default."""

    async def close(self) -> None:  # noqa: B027
        """Release resources. No-op by default."""

    # ========== Entity Operations ==========

    @abstractmethod
    async def upsert(self, entity: CachedEntity) -> None:
        """
        Insert or overwrite an entity.

        A profile upsert also evicts any other profile row of the same owner.
        """
        ...

    @abstractmethod
    async def get(self, kind: EntityKind, remote_id: str) -> CachedEntity | None:
        ...

    @abstractmethod
    async def get_profile(self, owner_id: str) -> CachedEntity | None:
        ...

    @abstractmethod
    async def list(
        self,
        kind: EntityKind,
        predicate: EntityPredicate | None = None,
        *,
        owner_id: str | None = None,
        parent_id: str | None = None,
        include_deleted: bool = False,
    ) -> list[CachedEntity]:
        """
        List entities of one kind.

        Args:
            kind: Partition to read
            predicate: Extra in-process filter
            owner_id: Restrict to one owner
            parent_id: Restrict to children of one conversation
            include_deleted: Also return tombstoned rows
        """
        ...

    @abstractmethod
    async def delete(self, kind: EntityKind, remote_id: str) -> bool:
        """Delete one entity. Returns False if it did not exist."""
        ...

    @abstractmethod
    async def delete_where(
        self,
        kind: EntityKind,
        *,
        owner_id: str | None = None,
        parent_id: str | None = None,
    ) -> int:
        """Delete every entity of ``kind`` matching the filters. Returns the count."""
        ...

    @abstractmethod
    async def clear(self) -> None:
        """Remove all cached entities, queued operations and conflict entries."""
        ...

    @abstractmethod
    async def entity_counts(self) -> dict[str, dict[str, int]]:
        """Row counts per kind, split by sync status."""
        ...

    # ========== Pending Operation Queue ==========

    @abstractmethod
    async def add_operation(self, operation: PendingOperation) -> PendingOperation:
        """Persist an operation at the tail. Returns it with ``sequence`` assigned."""
        ...

    @abstractmethod
    async def list_operations(
        self,
        status: OperationStatus | None = None,
        limit: int = 100,
    ) -> list[PendingOperation]:
        """Operations ordered by sequence. ``status`` defaults to pending."""
        ...

    @abstractmethod
    async def get_operation(self, operation_id: str) -> PendingOperation | None:
        ...

    @abstractmethod
    async def complete_operation(self, operation_id: str) -> bool:
        """Remove a replayed operation from the queue."""
        ...

    @abstractmethod
    async def record_operation_failure(
        self, operation_id: str, error: str
    ) -> PendingOperation | None:
        """Increment the retry count. Returns the updated operation."""
        ...

    @abstractmethod
    async def dead_letter_operation(self, operation_id: str, error: str) -> bool:
        """Withdraw an operation from replay, keeping it for inspection."""
        ...

    @abstractmethod
    async def rebase_operations(
        self,
        entity_kind: EntityKind,
        entity_id: str,
        base_remote_updated_at: datetime,
    ) -> int:
        """Point every pending operation of an entity at a new remote version."""
        ...

    @abstractmethod
    async def discard_operations(self, entity_kind: EntityKind, entity_id: str) -> int:
        """Drop every pending operation of an entity. Returns the count."""
        ...

    @abstractmethod
    async def has_pending_for_entity(
        self, entity_kind: EntityKind, entity_id: str, *, exclude: str | None = None
    ) -> bool:
        """True if a pending operation other than ``exclude`` targets the entity."""
        ...

    @abstractmethod
    async def has_pending_operation(self, kind: OperationKind, owner_id: str) -> bool:
        ...

    @abstractmethod
    async def operation_stats(self) -> dict[str, Any]:
        """Counts per status plus the oldest pending enqueue time."""
        ...

    # ========== Conflict Log ==========

    @abstractmethod
    async def record_conflict(self, entry: ConflictLogEntry) -> int:
        """Append a conflict entry. Returns its id."""
        ...

    @abstractmethod
    async def list_conflicts(
        self,
        limit: int = 50,
        only_not_uploaded: bool = False,
    ) -> list[ConflictLogEntry]:
        """Most recent entries first."""
        ...

    @abstractmethod
    async def mark_conflicts_uploaded(self, ids: list[int]) -> int:
        ...
