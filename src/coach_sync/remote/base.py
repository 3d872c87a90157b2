"""Abstract contract of the remote source of truth."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from coach_sync.core.conflicts import ConflictLogEntry
from coach_sync.core.entities import CachedEntity, EntityKind, SyncStatus
from coach_sync.utils.timeutils import utcnow


@dataclass(frozen=True)
class RemoteRecord:
    """An entity as reported by the remote store.

    ``updated_at`` is the server-assigned modification time; messages are
    immutable server-side, so theirs equals ``created_at``.
    """

    kind: EntityKind
    id: str
    owner_id: str
    payload: dict[str, Any]
    updated_at: datetime
    created_at: datetime | None = None
    parent_id: str | None = None

    def to_cached(self, cached_at: datetime | None = None) -> CachedEntity:
        """A freshly mirrored, synced cache row for this record."""
        return CachedEntity(
            kind=self.kind,
            remote_id=self.id,
            owner_id=self.owner_id,
            parent_id=self.parent_id,
            payload=dict(self.payload),
            remote_updated_at=self.updated_at,
            cached_at=cached_at or utcnow(),
            sync_status=SyncStatus.SYNCED,
        )

    @classmethod
    def from_cached(cls, entity: CachedEntity, updated_at: datetime | None = None) -> RemoteRecord:
        """The record a cached entity would write remotely."""
        return cls(
            kind=entity.kind,
            id=entity.remote_id,
            owner_id=entity.owner_id,
            payload=dict(entity.payload),
            updated_at=updated_at or entity.remote_updated_at,
            parent_id=entity.parent_id,
        )


class RemoteStore(ABC):
    """Owner-scoped CRUD against the managed data platform.

    Implementations raise :class:`~coach_sync.errors.RemoteUnavailableError`
    for network failures, timeouts and 5xx responses, and
    :class:`~coach_sync.errors.RemoteStoreError` for other rejections.
    """

    timeout: float = 10.0

    @abstractmethod
    async def fetch_profile(self, owner_id: str) -> RemoteRecord | None:
        """Return the owner's profile, or None if it does not exist."""
        ...

    @abstractmethod
    async def update_profile(
        self,
        record: RemoteRecord,
        *,
        expected_updated_at: datetime | None = None,
    ) -> RemoteRecord:
        """Write a profile and return the stored row.

        When ``expected_updated_at`` is given the write only applies if the
        remote row still carries that version; otherwise
        :class:`~coach_sync.errors.RemoteConflictError` is raised with the
        current row (None if the row no longer exists).
        """
        ...

    @abstractmethod
    async def create_profile(self, record: RemoteRecord) -> RemoteRecord:
        """Insert (or replace) a profile row."""
        ...

    @abstractmethod
    async def fetch_conversations(self, owner_id: str) -> list[RemoteRecord]:
        ...

    @abstractmethod
    async def fetch_messages(self, conversation_id: str) -> list[RemoteRecord]:
        ...

    @abstractmethod
    async def delete_conversation(self, conversation_id: str) -> bool:
        """Delete a conversation (messages cascade). False if it did not exist."""
        ...

    @abstractmethod
    async def delete_all_conversations(self, owner_id: str) -> int:
        """Delete every conversation of the owner. Returns the count removed."""
        ...

    @abstractmethod
    async def insert_conflict_log(self, entry: ConflictLogEntry) -> None:
        ...

    async def close(self) -> None:  # noqa: B027
        """Release network resources."""
