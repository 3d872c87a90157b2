"""Durable FIFO queue of mutations made while offline."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import StrEnum
from typing import TYPE_CHECKING

from coach_sync.core.operations import OperationKind, OperationStatus, PendingOperation
from coach_sync.errors import RemoteStoreError
from coach_sync.sync.locks import EntityLocks
from coach_sync.utils.timeutils import utcnow

if TYPE_CHECKING:
    from coach_sync.core.conflicts import ResolutionResult
    from coach_sync.core.entities import EntityKind
    from coach_sync.storage.base import ReplicaStore
    from coach_sync.sync.reachability import Reachability

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 5
DEFAULT_MAX_AGE = timedelta(days=7)


class ReplayOutcome(StrEnum):
    APPLIED = "applied"  # remote accepted the mutation as queued
    RESOLVED = "resolved"  # remote had diverged; the resolver decided


@dataclass(frozen=True)
class ReplayResult:
    """What a handler reports back after replaying one operation."""

    outcome: ReplayOutcome
    remote_updated_at: datetime | None = None
    resolution: ResolutionResult | None = None


OperationHandler = Callable[[PendingOperation], Awaitable[ReplayResult]]


@dataclass
class DrainReport:
    """Summary of one drain pass."""

    applied: int = 0
    resolved: int = 0
    dead_lettered: int = 0
    remaining: int = 0
    stopped_at: str | None = None  # operation id that failed transiently
    last_error: str | None = None
    resolutions: list[ResolutionResult] = field(default_factory=list)

    @property
    def completed(self) -> bool:
        """True when the pass ran until the queue was empty."""
        return self.stopped_at is None

    def to_dict(self) -> dict[str, object]:
        return {
            "applied": self.applied,
            "resolved": self.resolved,
            "dead_lettered": self.dead_lettered,
            "remaining": self.remaining,
            "stopped_at": self.stopped_at,
            "last_error": self.last_error,
        }


class PendingOperationQueue:
    """
    Replays queued mutations strictly in enqueue order.

    Every queue mutation, from ``enqueue`` or ``drain``, happens under one
    lock, so the two never interleave. A second lock admits a single drainer.
    Each replay runs under the target entity's lock, which the repository
    holds for its own writes; the queue lock is never held while waiting
    for an entity lock.
    """

    def __init__(
        self,
        store: ReplicaStore,
        *,
        locks: EntityLocks | None = None,
        reachability: Reachability | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        max_age: timedelta = DEFAULT_MAX_AGE,
        batch_size: int = 500,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._locks = locks or EntityLocks()
        self._reachability = reachability
        self._max_retries = max_retries
        self._max_age = max_age
        self._batch_size = batch_size
        self._clock = clock
        self._handlers: dict[OperationKind, OperationHandler] = {}
        self._lock = asyncio.Lock()
        self._drain_lock = asyncio.Lock()

    @property
    def locks(self) -> EntityLocks:
        return self._locks

    @property
    def is_draining(self) -> bool:
        return self._drain_lock.locked()

    def register_handler(self, kind: OperationKind, handler: OperationHandler) -> None:
        """Install the replay function for an operation kind (replaces any previous one)."""
        self._handlers[kind] = handler

    async def enqueue(self, operation: PendingOperation) -> PendingOperation:
        """Persist at the tail. Raises CacheError if the store rejects it."""
        async with self._lock:
            stored = await self._store.add_operation(operation)
        logger.debug(
            "Queued %s for %s %s (seq %d)",
            stored.kind.value,
            stored.entity_kind.value,
            stored.entity_id,
            stored.sequence,
        )
        return stored

    async def pending(self, limit: int = 100) -> list[PendingOperation]:
        return await self._store.list_operations(OperationStatus.PENDING, limit=limit)

    async def dead_letters(self, limit: int = 100) -> list[PendingOperation]:
        return await self._store.list_operations(OperationStatus.DEAD_LETTER, limit=limit)

    async def count(self) -> int:
        stats = await self._store.operation_stats()
        return int(stats["pending"])

    async def has_pending_for(
        self,
        entity_kind: EntityKind,
        entity_id: str,
        *,
        exclude: str | None = None,
    ) -> bool:
        """True if an operation for this entity (other than ``exclude``) awaits replay."""
        return await self._store.has_pending_for_entity(entity_kind, entity_id, exclude=exclude)

    async def drain(self) -> DrainReport:
        """Replay queued operations until the queue is empty or one fails transiently."""
        report = DrainReport()
        async with self._drain_lock:
            for _ in range(self._batch_size):
                if self._reachability is not None and not self._reachability.is_connected:
                    break

                async with self._lock:
                    head = await self._store.list_operations(OperationStatus.PENDING, limit=1)
                if not head:
                    break
                op = head[0]

                if self._clock() - op.enqueued_at > self._max_age:
                    await self._dead_letter(op, "exceeded maximum age", report)
                    continue

                handler = self._handlers.get(op.kind)
                if handler is None:
                    reason = f"no handler registered for {op.kind.value}"
                    await self._dead_letter(op, reason, report)
                    continue

                if not await self._replay(op, handler, report):
                    break

            report.remaining = int((await self._store.operation_stats())["pending"])

        if report.applied or report.resolved or report.dead_lettered or report.stopped_at:
            logger.info(
                "Drain finished: %d applied, %d resolved, %d dead-lettered, %d remaining",
                report.applied,
                report.resolved,
                report.dead_lettered,
                report.remaining,
                extra=report.to_dict(),
            )
        return report

    async def _replay(
        self,
        op: PendingOperation,
        handler: OperationHandler,
        report: DrainReport,
    ) -> bool:
        """Run one operation. Returns False when draining must stop."""
        async with self._locks.hold(op.entity_kind, op.entity_id):
            try:
                result = await handler(op)
            except (RemoteStoreError, TimeoutError) as e:
                return await self._record_failure(op, e, report)

            async with self._lock:
                await self._store.complete_operation(op.operation_id)
                if result.outcome == ReplayOutcome.RESOLVED:
                    # Later edits of this entity are subsumed by the decision.
                    discarded = await self._store.discard_operations(op.entity_kind, op.entity_id)
                    if discarded:
                        logger.debug(
                            "Discarded %d operations superseded by conflict on %s",
                            discarded,
                            op.entity_id,
                        )
                elif result.remote_updated_at is not None:
                    await self._store.rebase_operations(
                        op.entity_kind, op.entity_id, result.remote_updated_at
                    )

        if result.outcome == ReplayOutcome.RESOLVED:
            report.resolved += 1
            if result.resolution is not None:
                report.resolutions.append(result.resolution)
        else:
            report.applied += 1
        return True

    async def _record_failure(
        self,
        op: PendingOperation,
        error: BaseException,
        report: DrainReport,
    ) -> bool:
        message = str(error) or type(error).__name__
        async with self._lock:
            updated = await self._store.record_operation_failure(op.operation_id, message)
        retries = updated.retry_count if updated is not None else op.retry_count + 1

        if retries >= self._max_retries:
            await self._dead_letter(op, f"gave up after {retries} attempts: {message}", report)
            return True

        logger.info(
            "Replay of %s %s failed (attempt %d/%d): %s",
            op.kind.value,
            op.entity_id,
            retries,
            self._max_retries,
            message,
        )
        report.stopped_at = op.operation_id
        report.last_error = message
        return False

    async def _dead_letter(self, op: PendingOperation, reason: str, report: DrainReport) -> None:
        async with self._lock:
            await self._store.dead_letter_operation(op.operation_id, reason)
        report.dead_lettered += 1
        logger.warning(
            "Dead-lettered %s for %s %s: %s",
            op.kind.value,
            op.entity_kind.value,
            op.entity_id,
            reason,
            extra={"operation_id": op.operation_id, "entity_id": op.entity_id},
        )
