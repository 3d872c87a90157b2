"""Reconnect-driven synchronization."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING, Any

from coach_sync.errors import SyncError
from coach_sync.sync.events import SyncCompletedEvent, WriteEvent, WriteOutcome
from coach_sync.utils.timeutils import utcnow

if TYPE_CHECKING:
    from coach_sync.sync.reachability import Reachability
    from coach_sync.sync.repository import SyncRepository

logger = logging.getLogger(__name__)

OwnerProvider = Callable[[], "str | None"]


class SyncCoordinator:
    """
    Turns connectivity edges into sync passes.

    Each false→true edge schedules one ``perform_sync`` after
    ``debounce_seconds``; an edge arriving before that sync starts replaces
    it, so a flapping connection syncs once. A write queued while the link
    is up (a transient remote failure) schedules a pass the same way.

    Usage:
        coordinator = SyncCoordinator(repository, reachability, owner_provider=session.user_id)
        coordinator.start()
        ...
        await coordinator.stop()
    """

    def __init__(
        self,
        repository: SyncRepository,
        reachability: Reachability,
        *,
        owner_provider: OwnerProvider = lambda: None,
        debounce_seconds: float = 1.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repository = repository
        self._reachability = reachability
        self._notifier = repository.notifier
        self._owner_provider = owner_provider
        self._debounce = debounce_seconds
        self._clock = clock
        self._scheduled: asyncio.Task[Any] | None = None
        self._sync_lock = asyncio.Lock()
        self._unsubscribers: list[Callable[[], None]] = []
        self._last_synced_at: datetime | None = None
        self._last_event: SyncCompletedEvent | None = None

    @property
    def last_synced_at(self) -> datetime | None:
        return self._last_synced_at

    @property
    def last_event(self) -> SyncCompletedEvent | None:
        return self._last_event

    @property
    def is_syncing(self) -> bool:
        return self._sync_lock.locked()

    def start(self) -> None:
        """Subscribe to reconnect edges and queued writes."""
        if self._unsubscribers:
            return
        self._unsubscribers.append(self._reachability.subscribe(self.schedule_sync))
        self._unsubscribers.append(self._notifier.subscribe(self._on_write))

    async def stop(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        if self._scheduled is not None and not self._scheduled.done():
            self._scheduled.cancel()
            try:
                await self._scheduled
            except asyncio.CancelledError:
                pass
        self._scheduled = None

    def schedule_sync(self) -> asyncio.Task[Any]:
        """Debounced sync; replaces a pending one that has not started."""
        if self._scheduled is not None and not self._scheduled.done():
            self._scheduled.cancel()
        self._scheduled = asyncio.create_task(self._debounced_sync())
        self._scheduled.add_done_callback(_log_sync_exception)
        return self._scheduled

    def _on_write(self, event: WriteEvent) -> None:
        if event.outcome == WriteOutcome.QUEUED and self._reachability.is_connected:
            self.schedule_sync()

    async def _debounced_sync(self) -> SyncCompletedEvent | None:
        if self._debounce > 0:
            await asyncio.sleep(self._debounce)
        # Past this point a newer edge no longer cancels the pass.
        return await asyncio.shield(self.perform_sync())

    async def perform_sync(self) -> SyncCompletedEvent | None:
        """Drain the queue, reconcile the signed-in owner, upload conflict logs.

        Returns None if another pass was already running or the link dropped.
        """
        if self._sync_lock.locked():
            logger.debug("Sync already in progress; skipping")
            return None

        async with self._sync_lock:
            if not self._reachability.is_connected:
                return None

            owner_id = self._owner_provider()
            applied = conflicts = dead_lettered = remaining = 0

            try:
                report = await self._repository.queue.drain()
                applied = report.applied
                conflicts = report.resolved
                dead_lettered = report.dead_lettered
                remaining = report.remaining
            except SyncError as e:
                logger.warning("Queue drain failed: %s", e)

            if owner_id:
                reconcile = await self._repository.reconcile(owner_id)
                conflicts += len(reconcile.resolutions)

            await self._repository.conflict_logger.upload_pending()

            event = SyncCompletedEvent(
                owner_id=owner_id,
                applied=applied,
                conflicts=conflicts,
                dead_lettered=dead_lettered,
                remaining=remaining,
                completed_at=self._clock(),
            )
            self._last_synced_at = event.completed_at
            self._last_event = event
            self._notifier.publish(event)
            logger.info(
                "Sync completed: %d applied, %d conflicts, %d remaining",
                applied,
                conflicts,
                remaining,
            )
            return event


def _log_sync_exception(task: asyncio.Task[Any]) -> None:
    """Log unhandled exceptions from a scheduled sync pass."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Scheduled sync raised unhandled exception: %s", exc)
