"""Cached entity data structures - the rows of the local replica."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import StrEnum
from typing import Any

from coach_sync.utils.timeutils import format_timestamp, parse_timestamp, utcnow


class EntityKind(StrEnum):
    """Entity partitions held by the replica."""

    PROFILE = "context_profile"
    CONVERSATION = "conversation"
    MESSAGE = "message"


class SyncStatus(StrEnum):
    """Relationship of a cached row to the remote store."""

    SYNCED = "synced"
    PENDING = "pending"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class Edited:
    """The cached row carries a device-local mutation made at ``at``."""

    at: datetime


@dataclass(frozen=True)
class Unedited:
    """The cached row only mirrors what the remote store reported."""


UNEDITED = Unedited()

LocalEdit = Edited | Unedited


def local_edit_from(value: datetime | str | None) -> LocalEdit:
    """Build a LocalEdit from a stored timestamp (None means unedited)."""
    parsed = parse_timestamp(value)
    if parsed is None:
        return UNEDITED
    return Edited(at=parsed)


def local_edit_timestamp(edit: LocalEdit) -> datetime | None:
    """Storage-side projection of a LocalEdit."""
    if isinstance(edit, Edited):
        return edit.at
    return None


@dataclass(frozen=True)
class CachedEntity:
    """
    A locally cached copy of a profile, conversation or message.

    Entities are immutable; every state transition returns a new instance.

    Attributes:
        kind: Entity partition
        remote_id: Identifier assigned by the remote store
        owner_id: User that owns the record
        payload: Entity-specific fields, opaque to the sync core
        remote_updated_at: Last modification time reported remotely
        local_edit: Unconfirmed device-local mutation, if any
        cached_at: When this copy was last written
        sync_status: synced / pending / conflict
        parent_id: Conversation id for messages
        deleted: Tombstone for an offline delete awaiting replay
    """

    kind: EntityKind
    remote_id: str
    owner_id: str
    payload: dict[str, Any]
    remote_updated_at: datetime
    local_edit: LocalEdit = UNEDITED
    cached_at: datetime = field(default_factory=utcnow)
    sync_status: SyncStatus = SyncStatus.SYNCED
    parent_id: str | None = None
    deleted: bool = False

    @property
    def has_local_edit(self) -> bool:
        return isinstance(self.local_edit, Edited)

    @property
    def is_pending(self) -> bool:
        """True while a local mutation awaits remote confirmation."""
        return self.has_local_edit or self.sync_status != SyncStatus.SYNCED or self.deleted

    def with_payload(self, payload: dict[str, Any]) -> CachedEntity:
        """Return a copy carrying a new payload (status untouched)."""
        return replace(self, payload=dict(payload))

    def mark_pending(self, edited_at: datetime) -> CachedEntity:
        """Optimistic offline write: stamp the local edit and flag pending."""
        return replace(
            self,
            local_edit=Edited(at=edited_at),
            sync_status=SyncStatus.PENDING,
            cached_at=edited_at,
        )

    def mark_conflict(self) -> CachedEntity:
        return replace(self, sync_status=SyncStatus.CONFLICT)

    def mark_synced(
        self,
        *,
        remote_updated_at: datetime | None = None,
        payload: dict[str, Any] | None = None,
        cached_at: datetime | None = None,
    ) -> CachedEntity:
        """Remote confirmed this row: clear the local edit and the status."""
        return replace(
            self,
            payload=dict(payload) if payload is not None else self.payload,
            remote_updated_at=remote_updated_at or self.remote_updated_at,
            local_edit=UNEDITED,
            sync_status=SyncStatus.SYNCED,
            cached_at=cached_at or utcnow(),
            deleted=False,
        )

    def tombstone(self, deleted_at: datetime) -> CachedEntity:
        """Offline delete: hide the row until the remote delete is replayed."""
        return replace(
            self,
            deleted=True,
            local_edit=Edited(at=deleted_at),
            sync_status=SyncStatus.PENDING,
            cached_at=deleted_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "remote_id": self.remote_id,
            "owner_id": self.owner_id,
            "parent_id": self.parent_id,
            "payload": self.payload,
            "remote_updated_at": format_timestamp(self.remote_updated_at),
            "local_edited_at": format_timestamp(local_edit_timestamp(self.local_edit)),
            "cached_at": format_timestamp(self.cached_at),
            "sync_status": self.sync_status.value,
            "deleted": self.deleted,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CachedEntity:
        remote_updated_at = parse_timestamp(data.get("remote_updated_at"))
        if remote_updated_at is None:
            raise ValueError("remote_updated_at is required")
        return cls(
            kind=EntityKind(data["kind"]),
            remote_id=str(data["remote_id"]),
            owner_id=str(data["owner_id"]),
            parent_id=data.get("parent_id"),
            payload=dict(data.get("payload") or {}),
            remote_updated_at=remote_updated_at,
            local_edit=local_edit_from(data.get("local_edited_at")),
            cached_at=parse_timestamp(data.get("cached_at")) or utcnow(),
            sync_status=SyncStatus(data.get("sync_status", SyncStatus.SYNCED.value)),
            deleted=bool(data.get("deleted", False)),
        )
