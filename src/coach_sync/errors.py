"""Error taxonomy for the sync core.

Only :class:`NotFoundError` and an unpersistable enqueue (:class:`CacheError`)
ever reach callers of :class:`~coach_sync.sync.repository.SyncRepository`.
Everything else degrades to cached data or a queued write.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from coach_sync.remote.base import RemoteRecord


class SyncError(Exception):
    """Base class for all coach-sync errors."""


class NotFoundError(SyncError):
    """No remote record and no cached copy exist."""

    def __init__(self, entity_type: str, entity_id: str) -> None:
        super().__init__(f"{entity_type} {entity_id} not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class RemoteStoreError(SyncError):
    """The remote store rejected or failed a request."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RemoteUnavailableError(RemoteStoreError):
    """Network failure, timeout, or 5xx from the remote store."""


class RemoteConflictError(RemoteStoreError):
    """A conditional write found the remote row changed since it was read.

    ``current`` is the row as it exists now, or None when it was deleted.
    """

    def __init__(self, message: str, current: RemoteRecord | None = None) -> None:
        super().__init__(message, status_code=409)
        self.current = current


class CacheError(SyncError):
    """Local replica persistence failed (disk, serialization, closed store)."""
