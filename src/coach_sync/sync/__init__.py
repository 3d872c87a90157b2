"""Offline queue, conflict resolution and the sync repository facade."""

from coach_sync.sync.conflict_log import ConflictLogger
from coach_sync.sync.coordinator import SyncCoordinator
from coach_sync.sync.events import SyncCompletedEvent, WriteEvent, WriteNotifier, WriteOutcome
from coach_sync.sync.locks import EntityLocks
from coach_sync.sync.queue import (
    DrainReport,
    PendingOperationQueue,
    ReplayOutcome,
    ReplayResult,
)
from coach_sync.sync.reachability import Reachability, ReachabilityProbe
from coach_sync.sync.repository import ReconcileReport, SyncRepository, WriteResult
from coach_sync.sync.resolver import ConflictResolver

__all__ = [
    "ConflictLogger",
    "ConflictResolver",
    "DrainReport",
    "EntityLocks",
    "PendingOperationQueue",
    "Reachability",
    "ReachabilityProbe",
    "ReconcileReport",
    "ReplayOutcome",
    "ReplayResult",
    "SyncCompletedEvent",
    "SyncCoordinator",
    "SyncRepository",
    "WriteEvent",
    "WriteNotifier",
    "WriteOutcome",
    "WriteResult",
]
