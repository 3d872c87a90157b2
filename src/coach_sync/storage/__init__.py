"""Local replica backends."""

from coach_sync.storage.base import ReplicaStore
from coach_sync.storage.memory_store import InMemoryReplicaStore
from coach_sync.storage.sqlite_store import SQLiteReplicaStore

__all__ = [
    "InMemoryReplicaStore",
    "ReplicaStore",
    "SQLiteReplicaStore",
]
