"""Conflict resolution records."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from coach_sync.utils.timeutils import format_timestamp, utcnow


class ConflictType(StrEnum):
    """Why a local and a remote copy disagreed."""

    TIMESTAMP_MISMATCH = "timestamp_mismatch"
    DATA_MISMATCH = "data_mismatch"
    MISSING_LOCAL = "missing_local"
    MISSING_REMOTE = "missing_remote"


class Resolution(StrEnum):
    """Which copy became authoritative."""

    SERVER_WINS = "server_wins"
    LOCAL_WINS = "local_wins"
    NO_CONFLICT = "no_conflict"


@dataclass(frozen=True)
class ConflictLogEntry:
    """A recorded conflict decision.

    Carries identifiers and timestamps only, never entity content.
    """

    entity_type: str
    entity_id: str
    conflict_type: ConflictType
    resolution: Resolution
    local_timestamp: datetime | None
    remote_timestamp: datetime | None
    resolved_at: datetime = field(default_factory=utcnow)
    owner_id: str | None = None
    id: int | None = None
    uploaded: bool = False

    def to_remote_row(self) -> dict[str, Any]:
        """Row for the remote ``sync_conflict_logs`` table."""
        return {
            "user_id": self.owner_id,
            "record_type": self.entity_type,
            "record_id": self.entity_id,
            "conflict_type": self.conflict_type.value,
            "resolution": self.resolution.value,
            "local_timestamp": format_timestamp(self.local_timestamp),
            "remote_timestamp": format_timestamp(self.remote_timestamp),
            "resolved_at": format_timestamp(self.resolved_at),
        }


@dataclass(frozen=True)
class ResolutionResult:
    """Outcome of one resolver decision."""

    entity_type: str
    entity_id: str
    resolution: Resolution
    log_entry: ConflictLogEntry | None = None

    @property
    def server_wins(self) -> bool:
        return self.resolution == Resolution.SERVER_WINS

    @property
    def local_wins(self) -> bool:
        return self.resolution == Resolution.LOCAL_WINS
