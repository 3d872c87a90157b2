"""Deterministic conflict resolution between cached and remote copies.

Rules per entity kind:
- Conversations: the remote modification time is authoritative. Any
  difference from the cached ``remote_updated_at`` means the server wins.
- Messages: immutable once written, so differing ``created_at`` or content
  means the server wins.
- Profiles: the only entity edited offline. The newer of the local edit and
  the remote modification wins; an unedited cache simply follows the server.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from coach_sync.core.conflicts import (
    ConflictLogEntry,
    ConflictType,
    Resolution,
    ResolutionResult,
)
from coach_sync.core.entities import CachedEntity, EntityKind, local_edit_timestamp
from coach_sync.remote.base import RemoteRecord
from coach_sync.utils.timeutils import parse_timestamp, utcnow

module_logger = logging.getLogger(__name__)


class ConflictResolver:
    """Pure resolver; the only side effect is a DEBUG log line per decision."""

    def __init__(
        self,
        logger: logging.Logger | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._logger = logger or module_logger
        self._clock = clock

    def resolve(self, local: CachedEntity, remote: RemoteRecord) -> ResolutionResult:
        """Dispatch on the entity kind."""
        if local.kind == EntityKind.CONVERSATION:
            return self.resolve_conversation(local, remote)
        if local.kind == EntityKind.MESSAGE:
            return self.resolve_message(local, remote)
        return self.resolve_profile(local, remote)

    def resolve_conversation(self, local: CachedEntity, remote: RemoteRecord) -> ResolutionResult:
        if local.remote_updated_at == remote.updated_at:
            return self._no_conflict(local)
        return self._decide(
            local,
            Resolution.SERVER_WINS,
            ConflictType.TIMESTAMP_MISMATCH,
            local_timestamp=local.remote_updated_at,
            remote_timestamp=remote.updated_at,
        )

    def resolve_message(self, local: CachedEntity, remote: RemoteRecord) -> ResolutionResult:
        local_created = _message_created_at(local)
        remote_created = remote.created_at or remote.updated_at
        same_content = local.payload.get("content") == remote.payload.get("content")
        if local_created == remote_created and same_content:
            return self._no_conflict(local)
        return self._decide(
            local,
            Resolution.SERVER_WINS,
            ConflictType.DATA_MISMATCH,
            local_timestamp=local_created,
            remote_timestamp=remote_created,
        )

    def resolve_profile(self, local: CachedEntity, remote: RemoteRecord) -> ResolutionResult:
        edited_at = local_edit_timestamp(local.local_edit)
        if edited_at is None:
            # Nothing local to protect: follow the server silently.
            return ResolutionResult(
                entity_type=local.kind.value,
                entity_id=local.remote_id,
                resolution=Resolution.SERVER_WINS,
            )
        if edited_at == remote.updated_at:
            return self._no_conflict(local)
        if edited_at > remote.updated_at:
            resolution = Resolution.LOCAL_WINS
        else:
            resolution = Resolution.SERVER_WINS
        return self._decide(
            local,
            resolution,
            ConflictType.TIMESTAMP_MISMATCH,
            local_timestamp=edited_at,
            remote_timestamp=remote.updated_at,
        )

    def resolve_missing_remote(self, local: CachedEntity) -> ResolutionResult:
        """The cached entity no longer exists remotely.

        A locally edited profile is recreated; anything else is dropped.
        """
        keep_local = local.kind == EntityKind.PROFILE and local.has_local_edit
        return self._decide(
            local,
            Resolution.LOCAL_WINS if keep_local else Resolution.SERVER_WINS,
            ConflictType.MISSING_REMOTE,
            local_timestamp=local_edit_timestamp(local.local_edit) or local.remote_updated_at,
            remote_timestamp=None,
        )

    def resolve_missing_local(self, remote: RemoteRecord) -> ResolutionResult:
        """A queued mutation found no cached row; the remote copy is re-cached."""
        entry = ConflictLogEntry(
            entity_type=remote.kind.value,
            entity_id=remote.id,
            conflict_type=ConflictType.MISSING_LOCAL,
            resolution=Resolution.SERVER_WINS,
            local_timestamp=None,
            remote_timestamp=remote.updated_at,
            resolved_at=self._clock(),
            owner_id=remote.owner_id,
        )
        self._log(entry)
        return ResolutionResult(
            entity_type=entry.entity_type,
            entity_id=entry.entity_id,
            resolution=entry.resolution,
            log_entry=entry,
        )

    def _no_conflict(self, local: CachedEntity) -> ResolutionResult:
        return ResolutionResult(
            entity_type=local.kind.value,
            entity_id=local.remote_id,
            resolution=Resolution.NO_CONFLICT,
        )

    def _decide(
        self,
        local: CachedEntity,
        resolution: Resolution,
        conflict_type: ConflictType,
        *,
        local_timestamp: datetime | None,
        remote_timestamp: datetime | None,
    ) -> ResolutionResult:
        entry = ConflictLogEntry(
            entity_type=local.kind.value,
            entity_id=local.remote_id,
            conflict_type=conflict_type,
            resolution=resolution,
            local_timestamp=local_timestamp,
            remote_timestamp=remote_timestamp,
            resolved_at=self._clock(),
            owner_id=local.owner_id,
        )
        self._log(entry)
        return ResolutionResult(
            entity_type=entry.entity_type,
            entity_id=entry.entity_id,
            resolution=resolution,
            log_entry=entry,
        )

    def _log(self, entry: ConflictLogEntry) -> None:
        self._logger.debug(
            "Resolved %s %s: %s (%s)",
            entry.entity_type,
            entry.entity_id,
            entry.resolution.value,
            entry.conflict_type.value,
            extra={
                "entity_type": entry.entity_type,
                "entity_id": entry.entity_id,
                "resolution": entry.resolution.value,
                "conflict_type": entry.conflict_type.value,
            },
        )


def _message_created_at(local: CachedEntity) -> datetime:
    return parse_timestamp(local.payload.get("created_at")) or local.remote_updated_at
