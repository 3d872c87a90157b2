"""Core data structures for the sync core."""

from coach_sync.core.conflicts import (
    ConflictLogEntry,
    ConflictType,
    Resolution,
    ResolutionResult,
)
from coach_sync.core.entities import (
    UNEDITED,
    CachedEntity,
    Edited,
    EntityKind,
    LocalEdit,
    SyncStatus,
    Unedited,
)
from coach_sync.core.operations import OperationKind, OperationStatus, PendingOperation

__all__ = [
    "CachedEntity",
    "ConflictLogEntry",
    "ConflictType",
    "Edited",
    "EntityKind",
    "LocalEdit",
    "OperationKind",
    "OperationStatus",
    "PendingOperation",
    "Resolution",
    "ResolutionResult",
    "SyncStatus",
    "UNEDITED",
    "Unedited",
]
