"""Conflict logging: structured log, local persistence, remote upload."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from coach_sync.errors import CacheError, RemoteStoreError

if TYPE_CHECKING:
    from coach_sync.core.conflicts import ConflictLogEntry
    from coach_sync.remote.base import RemoteStore
    from coach_sync.storage.base import ReplicaStore
    from coach_sync.sync.reachability import Reachability

module_logger = logging.getLogger(__name__)


class ConflictLogger:
    """Records every resolver decision that produced a log entry.

    Entries carry identifiers and timestamps only. Persistence and upload
    failures never reach the caller; entries that could not be uploaded are
    retried by :meth:`upload_pending`.
    """

    def __init__(
        self,
        store: ReplicaStore,
        remote: RemoteStore,
        reachability: Reachability,
        logger: logging.Logger | None = None,
    ) -> None:
        self._store = store
        self._remote = remote
        self._reachability = reachability
        self._logger = logger or module_logger
        self._tasks: set[asyncio.Task[Any]] = set()
        self._in_flight: set[int] = set()

    async def record(self, entry: ConflictLogEntry) -> ConflictLogEntry:
        self._logger.info(
            "Sync conflict on %s %s resolved as %s",
            entry.entity_type,
            entry.entity_id,
            entry.resolution.value,
            extra={
                "entity_type": entry.entity_type,
                "entity_id": entry.entity_id,
                "conflict_type": entry.conflict_type.value,
                "resolution": entry.resolution.value,
            },
        )

        try:
            entry_id = await self._store.record_conflict(entry)
        except CacheError as e:
            self._logger.warning("Could not persist conflict entry: %s", e)
            entry_id = None
        stored = replace(entry, id=entry_id)

        if self._reachability.is_connected:
            self._schedule_upload(stored)
        return stored

    def _schedule_upload(self, entry: ConflictLogEntry) -> None:
        if entry.id is not None:
            self._in_flight.add(entry.id)
        task = asyncio.create_task(self._upload(entry))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _upload(self, entry: ConflictLogEntry) -> bool:
        try:
            await asyncio.wait_for(self._remote.insert_conflict_log(entry), self._remote.timeout)
            if entry.id is not None:
                await self._store.mark_conflicts_uploaded([entry.id])
        except (RemoteStoreError, CacheError, TimeoutError) as e:
            self._logger.debug("Conflict log upload deferred for %s: %s", entry.entity_id, e)
            return False
        finally:
            if entry.id is not None:
                self._in_flight.discard(entry.id)
        return True

    async def upload_pending(self, limit: int = 100) -> int:
        """Upload persisted entries the remote log has not seen. Returns the count."""
        if not self._reachability.is_connected:
            return 0
        try:
            entries = await self._store.list_conflicts(limit=limit, only_not_uploaded=True)
        except CacheError as e:
            self._logger.warning("Could not read conflict log: %s", e)
            return 0

        uploaded = 0
        # Oldest first, skipping entries a fire-and-forget upload already owns.
        for entry in reversed(entries):
            if entry.id in self._in_flight:
                continue
            if entry.id is not None:
                self._in_flight.add(entry.id)
            if not await self._upload(entry):
                break
            uploaded += 1
        return uploaded

    @property
    def pending_uploads(self) -> int:
        return len(self._tasks)

    async def aclose(self) -> None:
        """Wait for in-flight uploads."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
