"""Sync repository: the single entry point UI-facing code talks to.

Reads go remote-first and fall back to the replica. Writes go remote-first
and fall back to an optimistic cache write plus a queued replay. Neither
path ever surfaces a connectivity error; only NotFoundError and an enqueue
that could not be persisted reach the caller.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import TypeVar

from coach_sync.core.conflicts import ResolutionResult
from coach_sync.core.entities import CachedEntity, EntityKind
from coach_sync.core.operations import OperationKind, PendingOperation
from coach_sync.errors import CacheError, NotFoundError, RemoteConflictError, RemoteStoreError
from coach_sync.remote.base import RemoteRecord, RemoteStore
from coach_sync.storage.base import ReplicaStore
from coach_sync.sync.conflict_log import ConflictLogger
from coach_sync.sync.events import WriteEvent, WriteNotifier, WriteOutcome
from coach_sync.sync.queue import PendingOperationQueue, ReplayOutcome, ReplayResult
from coach_sync.sync.reachability import Reachability
from coach_sync.sync.resolver import ConflictResolver
from coach_sync.utils.timeutils import parse_timestamp, utcnow

module_logger = logging.getLogger(__name__)

T = TypeVar("T")

_EPOCH = datetime.min.replace(tzinfo=UTC)


@dataclass(frozen=True)
class WriteResult:
    """Outcome of a repository write."""

    outcome: WriteOutcome
    entity: CachedEntity | None = None
    operation_id: str | None = None

    @property
    def queued(self) -> bool:
        return self.outcome == WriteOutcome.QUEUED


@dataclass
class ReconcileReport:
    """What a post-reconnect refresh changed."""

    owner_id: str
    offline: bool = False
    conversations: int = 0
    messages_refreshed: int = 0
    profile_refreshed: bool = False
    resolutions: list[ResolutionResult] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class SyncRepository:
    """
    Facade over the replica, the remote store and the offline queue.

    All collaborators are passed in explicitly. Missing optional ones are
    built from the required ones, sharing the queue's entity locks.
    """

    def __init__(
        self,
        store: ReplicaStore,
        remote: RemoteStore,
        reachability: Reachability,
        *,
        queue: PendingOperationQueue | None = None,
        resolver: ConflictResolver | None = None,
        conflict_logger: ConflictLogger | None = None,
        notifier: WriteNotifier | None = None,
        clock: Callable[[], datetime] = utcnow,
        logger: logging.Logger | None = None,
    ) -> None:
        self._store = store
        self._remote = remote
        self._reachability = reachability
        self._clock = clock
        self._logger = logger or module_logger
        self._queue = queue or PendingOperationQueue(
            store, reachability=reachability, clock=clock
        )
        self._locks = self._queue.locks
        self._resolver = resolver or ConflictResolver(logger=self._logger, clock=clock)
        self._conflicts = conflict_logger or ConflictLogger(
            store, remote, reachability, logger=self._logger
        )
        self._notifier = notifier or WriteNotifier()

        self._queue.register_handler(OperationKind.UPDATE_PROFILE, self._replay_update_profile)
        self._queue.register_handler(
            OperationKind.DELETE_CONVERSATION, self._replay_delete_conversation
        )
        self._queue.register_handler(
            OperationKind.DELETE_ALL_CONVERSATIONS, self._replay_delete_all_conversations
        )

    @property
    def queue(self) -> PendingOperationQueue:
        return self._queue

    @property
    def notifier(self) -> WriteNotifier:
        return self._notifier

    @property
    def conflict_logger(self) -> ConflictLogger:
        return self._conflicts

    @property
    def is_online(self) -> bool:
        return self._reachability.is_connected

    # ========== Reads ==========

    async def fetch_profile(self, owner_id: str) -> CachedEntity:
        """Remote profile, else the cached copy, else NotFoundError."""
        if self.is_online:
            try:
                record = await self._call(self._remote.fetch_profile(owner_id))
            except (RemoteStoreError, TimeoutError) as e:
                self._log_fallback("fetch_profile", owner_id, e)
            else:
                if record is not None:
                    entity, _ = await self._apply_remote_profile(record)
                    return entity

        cached = await self._cache_get_profile(owner_id)
        if cached is None:
            raise NotFoundError(EntityKind.PROFILE.value, owner_id)
        return cached

    async def fetch_conversations(self, owner_id: str) -> list[CachedEntity]:
        """Owner's conversations, most recent activity first."""
        if self.is_online:
            try:
                records = await self._call(self._remote.fetch_conversations(owner_id))
            except (RemoteStoreError, TimeoutError) as e:
                self._log_fallback("fetch_conversations", owner_id, e)
            else:
                entities, _ = await self._apply_conversations(owner_id, records)
                return entities

        cached = await self._cache_list(EntityKind.CONVERSATION, owner_id=owner_id)
        return _sort_conversations(cached)

    async def fetch_messages(self, conversation_id: str) -> list[CachedEntity]:
        """Messages of one conversation, oldest first."""
        conversation = await self._cache_get(EntityKind.CONVERSATION, conversation_id)
        if conversation is not None and conversation.deleted:
            return []

        if self.is_online:
            try:
                records = await self._call(self._remote.fetch_messages(conversation_id))
            except (RemoteStoreError, TimeoutError) as e:
                self._log_fallback("fetch_messages", conversation_id, e)
            else:
                entities, _ = await self._apply_messages(conversation_id, records)
                return entities

        cached = await self._cache_list(EntityKind.MESSAGE, parent_id=conversation_id)
        return _sort_messages(cached)

    # ========== Writes ==========

    async def update_profile(self, profile: CachedEntity) -> WriteResult:
        """Save a profile, remotely if possible, otherwise queued for replay."""
        async with self._locks.hold(EntityKind.PROFILE, profile.remote_id):
            now = self._clock()
            if self.is_online and not await self._has_queued(EntityKind.PROFILE, profile.remote_id):
                record = RemoteRecord.from_cached(profile, updated_at=now)
                try:
                    stored = await self._call(self._remote.update_profile(record))
                except (RemoteStoreError, TimeoutError) as e:
                    self._log_fallback("update_profile", profile.remote_id, e)
                else:
                    entity = stored.to_cached(cached_at=now)
                    await self._cache_upsert(entity)
                    self._publish(EntityKind.PROFILE, profile.remote_id, WriteOutcome.COMMITTED)
                    return WriteResult(WriteOutcome.COMMITTED, entity=entity)

            cached = await self._cache_get(EntityKind.PROFILE, profile.remote_id)
            base = cached.remote_updated_at if cached is not None else profile.remote_updated_at
            pending = replace(profile, remote_updated_at=base).mark_pending(now)
            await self._cache_upsert(pending)

            operation = await self._queue.enqueue(
                PendingOperation.create(
                    OperationKind.UPDATE_PROFILE,
                    EntityKind.PROFILE,
                    profile.remote_id,
                    profile.owner_id,
                    payload=profile.payload,
                    base_remote_updated_at=base,
                    enqueued_at=now,
                )
            )
            self._publish(
                EntityKind.PROFILE, profile.remote_id, WriteOutcome.QUEUED, operation.operation_id
            )
            return WriteResult(
                WriteOutcome.QUEUED, entity=pending, operation_id=operation.operation_id
            )

    async def delete_conversation(self, conversation_id: str) -> WriteResult:
        """Delete a conversation and its messages."""
        async with self._locks.hold(EntityKind.CONVERSATION, conversation_id):
            now = self._clock()
            cached = await self._cache_get(EntityKind.CONVERSATION, conversation_id)

            if self.is_online and not await self._has_queued(
                EntityKind.CONVERSATION, conversation_id
            ):
                try:
                    existed = await self._call(self._remote.delete_conversation(conversation_id))
                except (RemoteStoreError, TimeoutError) as e:
                    self._log_fallback("delete_conversation", conversation_id, e)
                else:
                    if not existed and cached is None:
                        raise NotFoundError(EntityKind.CONVERSATION.value, conversation_id)
                    await self._drop_conversation(conversation_id)
                    self._publish(EntityKind.CONVERSATION, conversation_id, WriteOutcome.COMMITTED)
                    return WriteResult(WriteOutcome.COMMITTED)

            if cached is None:
                raise NotFoundError(EntityKind.CONVERSATION.value, conversation_id)

            tombstone = cached.tombstone(now)
            await self._cache_upsert(tombstone)
            await self._cache_delete_where(EntityKind.MESSAGE, parent_id=conversation_id)

            operation = await self._queue.enqueue(
                PendingOperation.create(
                    OperationKind.DELETE_CONVERSATION,
                    EntityKind.CONVERSATION,
                    conversation_id,
                    cached.owner_id,
                    base_remote_updated_at=cached.remote_updated_at,
                    enqueued_at=now,
                )
            )
            self._publish(
                EntityKind.CONVERSATION,
                conversation_id,
                WriteOutcome.QUEUED,
                operation.operation_id,
            )
            return WriteResult(
                WriteOutcome.QUEUED, entity=tombstone, operation_id=operation.operation_id
            )

    async def delete_all_conversations(self, owner_id: str) -> WriteResult:
        """Delete every conversation of an owner."""
        async with self._locks.hold(EntityKind.CONVERSATION, owner_id):
            now = self._clock()
            if self.is_online and not await self._has_queued(EntityKind.CONVERSATION, owner_id):
                try:
                    removed = await self._call(self._remote.delete_all_conversations(owner_id))
                except (RemoteStoreError, TimeoutError) as e:
                    self._log_fallback("delete_all_conversations", owner_id, e)
                else:
                    await self._drop_owner_conversations(owner_id)
                    self._logger.debug("Deleted %d conversations for %s", removed, owner_id)
                    self._publish(EntityKind.CONVERSATION, owner_id, WriteOutcome.COMMITTED)
                    return WriteResult(WriteOutcome.COMMITTED)

            await self._drop_owner_conversations(owner_id)
            operation = await self._queue.enqueue(
                PendingOperation.create(
                    OperationKind.DELETE_ALL_CONVERSATIONS,
                    EntityKind.CONVERSATION,
                    owner_id,
                    owner_id,
                    enqueued_at=now,
                )
            )
            self._publish(
                EntityKind.CONVERSATION, owner_id, WriteOutcome.QUEUED, operation.operation_id
            )
            return WriteResult(WriteOutcome.QUEUED, operation_id=operation.operation_id)

    # ========== Reconciliation & maintenance ==========

    async def reconcile(self, owner_id: str) -> ReconcileReport:
        """Refresh conversations, overwritten conversations' messages, and the profile."""
        report = ReconcileReport(owner_id=owner_id)
        if not self.is_online:
            report.offline = True
            return report

        try:
            records = await self._call(self._remote.fetch_conversations(owner_id))
        except (RemoteStoreError, TimeoutError) as e:
            report.errors.append(f"conversations: {e}")
        else:
            conversations, resolutions = await self._apply_conversations(owner_id, records)
            report.conversations = len(conversations)
            report.resolutions.extend(resolutions)
            for resolution in resolutions:
                if not resolution.server_wins:
                    continue
                try:
                    messages = await self._call(self._remote.fetch_messages(resolution.entity_id))
                except (RemoteStoreError, TimeoutError) as e:
                    report.errors.append(f"messages {resolution.entity_id}: {e}")
                    continue
                _, message_resolutions = await self._apply_messages(resolution.entity_id, messages)
                report.messages_refreshed += len(messages)
                report.resolutions.extend(message_resolutions)

        try:
            profile = await self._call(self._remote.fetch_profile(owner_id))
        except (RemoteStoreError, TimeoutError) as e:
            report.errors.append(f"profile: {e}")
        else:
            if profile is not None:
                _, resolution = await self._apply_remote_profile(profile)
                report.profile_refreshed = True
                if resolution is not None and resolution.log_entry is not None:
                    report.resolutions.append(resolution)

        if report.errors:
            self._logger.info(
                "Reconcile for %s incomplete: %s", owner_id, "; ".join(report.errors)
            )
        return report

    async def clear_local_data(self) -> bool:
        """Sign-out wipe of cached entities, queued operations and conflict entries."""
        try:
            await self._store.clear()
        except CacheError as e:
            self._logger.error("Failed to clear local data: %s", e)
            return False
        return True

    async def pending_operation_count(self) -> int:
        try:
            return await self._queue.count()
        except CacheError as e:
            self._logger.warning("Could not count pending operations: %s", e)
            return 0

    async def aclose(self) -> None:
        await self._conflicts.aclose()

    # ========== Replay handlers ==========

    async def _replay_update_profile(self, op: PendingOperation) -> ReplayResult:
        now = self._clock()
        cached = await self._cache_get(EntityKind.PROFILE, op.entity_id)

        if cached is None:
            current = await self._call(self._remote.fetch_profile(op.owner_id))
            if current is None:
                return ReplayResult(ReplayOutcome.APPLIED)
            resolution = self._resolver.resolve_missing_local(current)
            await self._cache_upsert(current.to_cached(cached_at=now))
            await self._record(resolution)
            return ReplayResult(
                ReplayOutcome.RESOLVED, remote_updated_at=current.updated_at, resolution=resolution
            )

        record = RemoteRecord(
            kind=EntityKind.PROFILE,
            id=op.entity_id,
            owner_id=op.owner_id,
            payload=dict(op.payload),
            updated_at=now,
        )
        try:
            stored = await self._call(
                self._remote.update_profile(record, expected_updated_at=op.base_remote_updated_at)
            )
        except RemoteConflictError as conflict:
            return await self._resolve_profile_conflict(cached, conflict.current)

        if await self._has_queued(EntityKind.PROFILE, op.entity_id, exclude=op.operation_id):
            # A later edit is still queued; keep it, just track the new version.
            entity = replace(cached, remote_updated_at=stored.updated_at)
        else:
            entity = cached.mark_synced(
                remote_updated_at=stored.updated_at, payload=stored.payload, cached_at=now
            )
        await self._cache_upsert(entity)
        self._publish(EntityKind.PROFILE, op.entity_id, WriteOutcome.COMMITTED, op.operation_id)
        return ReplayResult(ReplayOutcome.APPLIED, remote_updated_at=stored.updated_at)

    async def _resolve_profile_conflict(
        self,
        cached: CachedEntity,
        current: RemoteRecord | None,
    ) -> ReplayResult:
        now = self._clock()
        await self._cache_upsert(cached.mark_conflict())

        if current is None:
            resolution = self._resolver.resolve_missing_remote(cached)
            if resolution.local_wins:
                created = await self._call(
                    self._remote.create_profile(RemoteRecord.from_cached(cached, updated_at=now))
                )
                winner: CachedEntity | None = cached.mark_synced(
                    remote_updated_at=created.updated_at, payload=created.payload, cached_at=now
                )
            else:
                winner = None
        else:
            resolution = self._resolver.resolve_profile(cached, current)
            if resolution.local_wins:
                pushed = await self._call(
                    self._remote.update_profile(RemoteRecord.from_cached(cached, updated_at=now))
                )
                winner = cached.mark_synced(
                    remote_updated_at=pushed.updated_at, payload=pushed.payload, cached_at=now
                )
            else:
                winner = current.to_cached(cached_at=now)

        if winner is None:
            await self._cache_delete(EntityKind.PROFILE, cached.remote_id)
        else:
            await self._cache_upsert(winner)
        await self._record(resolution)
        return ReplayResult(
            ReplayOutcome.RESOLVED,
            remote_updated_at=winner.remote_updated_at if winner is not None else None,
            resolution=resolution,
        )

    async def _replay_delete_conversation(self, op: PendingOperation) -> ReplayResult:
        existed = await self._call(self._remote.delete_conversation(op.entity_id))
        if not existed:
            self._logger.debug("Conversation %s was already gone remotely", op.entity_id)
        await self._drop_conversation(op.entity_id)
        self._publish(
            EntityKind.CONVERSATION, op.entity_id, WriteOutcome.COMMITTED, op.operation_id
        )
        return ReplayResult(ReplayOutcome.APPLIED)

    async def _replay_delete_all_conversations(self, op: PendingOperation) -> ReplayResult:
        await self._call(self._remote.delete_all_conversations(op.owner_id))
        await self._drop_owner_conversations(op.owner_id)
        self._publish(
            EntityKind.CONVERSATION, op.entity_id, WriteOutcome.COMMITTED, op.operation_id
        )
        return ReplayResult(ReplayOutcome.APPLIED)

    # ========== Applying remote state ==========

    async def _apply_remote_profile(
        self, record: RemoteRecord
    ) -> tuple[CachedEntity, ResolutionResult | None]:
        async with self._locks.hold(EntityKind.PROFILE, record.id):
            cached = await self._cache_get_profile(record.owner_id)
            if cached is not None and cached.remote_id == record.id and cached.is_pending:
                # Local edit in flight; its queued replay settles the conflict.
                return cached, None

            resolution = None
            if cached is not None and cached.remote_id == record.id:
                resolution = self._resolver.resolve_profile(cached, record)
                await self._record(resolution)

            entity = record.to_cached(cached_at=self._clock())
            await self._cache_upsert(entity)
            return entity, resolution

    async def _apply_conversations(
        self, owner_id: str, records: list[RemoteRecord]
    ) -> tuple[list[CachedEntity], list[ResolutionResult]]:
        if await self._has_pending_delete_all(owner_id):
            return [], []

        cached_rows = await self._cache_list(
            EntityKind.CONVERSATION, owner_id=owner_id, include_deleted=True
        )
        stale = {row.remote_id for row in cached_rows}
        entities: list[CachedEntity] = []
        resolutions: list[ResolutionResult] = []

        for record in records:
            stale.discard(record.id)
            async with self._locks.hold(EntityKind.CONVERSATION, record.id):
                cached = await self._cache_get(EntityKind.CONVERSATION, record.id)
                if cached is not None and cached.is_pending:
                    if not cached.deleted:
                        entities.append(cached)
                    continue
                if cached is not None:
                    resolution = self._resolver.resolve_conversation(cached, record)
                    if resolution.log_entry is not None:
                        resolutions.append(resolution)
                        await self._record(resolution)
                entity = record.to_cached(cached_at=self._clock())
                await self._cache_upsert(entity)
                entities.append(entity)

        for remote_id in stale:
            async with self._locks.hold(EntityKind.CONVERSATION, remote_id):
                cached = await self._cache_get(EntityKind.CONVERSATION, remote_id)
                if cached is None:
                    continue
                if cached.is_pending:
                    if not cached.deleted:
                        entities.append(cached)
                    continue
                await self._drop_conversation(remote_id)

        return _sort_conversations(entities), resolutions

    async def _apply_messages(
        self, conversation_id: str, records: list[RemoteRecord]
    ) -> tuple[list[CachedEntity], list[ResolutionResult]]:
        if records and await self._has_pending_delete_all(records[0].owner_id):
            return [], []

        cached_rows = await self._cache_list(EntityKind.MESSAGE, parent_id=conversation_id)
        cached_by_id = {row.remote_id: row for row in cached_rows}
        entities: list[CachedEntity] = []
        resolutions: list[ResolutionResult] = []

        for record in records:
            cached = cached_by_id.pop(record.id, None)
            if cached is not None:
                resolution = self._resolver.resolve_message(cached, record)
                if resolution.log_entry is not None:
                    resolutions.append(resolution)
                    await self._record(resolution)
            entity = record.to_cached(cached_at=self._clock())
            await self._cache_upsert(entity)
            entities.append(entity)

        for leftover in cached_by_id.values():
            if not leftover.is_pending:
                await self._cache_delete(EntityKind.MESSAGE, leftover.remote_id)

        return _sort_messages(entities), resolutions

    async def _drop_conversation(self, conversation_id: str) -> None:
        await self._cache_delete_where(EntityKind.MESSAGE, parent_id=conversation_id)
        await self._cache_delete(EntityKind.CONVERSATION, conversation_id)

    async def _drop_owner_conversations(self, owner_id: str) -> None:
        await self._cache_delete_where(EntityKind.MESSAGE, owner_id=owner_id)
        await self._cache_delete_where(EntityKind.CONVERSATION, owner_id=owner_id)

    # ========== Helpers ==========

    async def _call(self, awaitable: Awaitable[T]) -> T:
        """Await a remote call bounded by the remote timeout."""
        return await asyncio.wait_for(awaitable, timeout=self._remote.timeout)

    async def _record(self, resolution: ResolutionResult) -> None:
        if resolution.log_entry is not None:
            await self._conflicts.record(resolution.log_entry)

    async def _has_queued(
        self,
        entity_kind: EntityKind,
        entity_id: str,
        exclude: str | None = None,
    ) -> bool:
        try:
            return await self._queue.has_pending_for(entity_kind, entity_id, exclude=exclude)
        except CacheError as e:
            self._logger.warning("Could not inspect queue: %s", e)
            return False

    async def _has_pending_delete_all(self, owner_id: str) -> bool:
        try:
            return await self._store.has_pending_operation(
                OperationKind.DELETE_ALL_CONVERSATIONS, owner_id
            )
        except CacheError as e:
            self._logger.warning("Could not inspect queue: %s", e)
            return False

    def _publish(
        self,
        entity_kind: EntityKind,
        entity_id: str,
        outcome: WriteOutcome,
        operation_id: str | None = None,
    ) -> None:
        self._notifier.publish(
            WriteEvent(
                entity_kind=entity_kind.value,
                entity_id=entity_id,
                outcome=outcome,
                operation_id=operation_id,
                at=self._clock(),
            )
        )

    def _log_fallback(self, action: str, entity_id: str, error: BaseException) -> None:
        self._logger.info(
            "%s for %s fell back to local replica: %s",
            action,
            entity_id,
            str(error) or type(error).__name__,
            extra={"action": action, "entity_id": entity_id},
        )

    # Cache access never fails the caller: errors are logged and read as misses.

    async def _cache_get(self, kind: EntityKind, remote_id: str) -> CachedEntity | None:
        try:
            return await self._store.get(kind, remote_id)
        except CacheError as e:
            self._logger.warning("Cache read failed for %s %s: %s", kind.value, remote_id, e)
            return None

    async def _cache_get_profile(self, owner_id: str) -> CachedEntity | None:
        try:
            return await self._store.get_profile(owner_id)
        except CacheError as e:
            self._logger.warning("Cache read failed for profile of %s: %s", owner_id, e)
            return None

    async def _cache_list(
        self,
        kind: EntityKind,
        *,
        owner_id: str | None = None,
        parent_id: str | None = None,
        include_deleted: bool = False,
    ) -> list[CachedEntity]:
        try:
            return await self._store.list(
                kind, owner_id=owner_id, parent_id=parent_id, include_deleted=include_deleted
            )
        except CacheError as e:
            self._logger.warning("Cache read failed for %s list: %s", kind.value, e)
            return []

    async def _cache_upsert(self, entity: CachedEntity) -> None:
        try:
            await self._store.upsert(entity)
        except CacheError as e:
            self._logger.warning(
                "Cache write failed for %s %s: %s", entity.kind.value, entity.remote_id, e
            )

    async def _cache_delete(self, kind: EntityKind, remote_id: str) -> None:
        try:
            await self._store.delete(kind, remote_id)
        except CacheError as e:
            self._logger.warning("Cache delete failed for %s %s: %s", kind.value, remote_id, e)

    async def _cache_delete_where(
        self,
        kind: EntityKind,
        *,
        owner_id: str | None = None,
        parent_id: str | None = None,
    ) -> None:
        try:
            await self._store.delete_where(kind, owner_id=owner_id, parent_id=parent_id)
        except CacheError as e:
            self._logger.warning("Cache delete failed for %s rows: %s", kind.value, e)


def _timestamp_or_epoch(value: str | datetime | None) -> datetime:
    try:
        return parse_timestamp(value) or _EPOCH
    except (TypeError, ValueError):
        return _EPOCH


def _sort_conversations(entities: list[CachedEntity]) -> list[CachedEntity]:
    return sorted(
        entities,
        key=lambda e: (_timestamp_or_epoch(e.payload.get("last_message_at")), e.remote_updated_at),
        reverse=True,
    )


def _sort_messages(entities: list[CachedEntity]) -> list[CachedEntity]:
    return sorted(
        entities,
        key=lambda e: (_timestamp_or_epoch(e.payload.get("created_at")), e.remote_updated_at),
    )
