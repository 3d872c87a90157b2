"""Remote source-of-truth clients."""

from coach_sync.remote.base import RemoteRecord, RemoteStore
from coach_sync.remote.http_store import HttpRemoteStore
from coach_sync.remote.memory_remote import InMemoryRemoteStore

__all__ = [
    "HttpRemoteStore",
    "InMemoryRemoteStore",
    "RemoteRecord",
    "RemoteStore",
]
