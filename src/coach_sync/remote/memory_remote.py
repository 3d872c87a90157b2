"""In-process remote store for development and testing.

Behaves like the managed platform: assigns ``updated_at`` on every write,
honours conditional updates, cascades message deletes. Connectivity can be
switched off to exercise the offline paths.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime
from typing import Any

from coach_sync.core.conflicts import ConflictLogEntry
from coach_sync.core.entities import EntityKind
from coach_sync.errors import RemoteConflictError, RemoteUnavailableError
from coach_sync.remote.base import RemoteRecord, RemoteStore
from coach_sync.utils.timeutils import utcnow


class InMemoryRemoteStore(RemoteStore):
    """Dict-backed RemoteStore.

    Args:
        clock: Source of server timestamps
        latency: Seconds every call sleeps before answering
    """

    def __init__(
        self,
        *,
        clock: Callable[[], datetime] = utcnow,
        latency: float = 0.0,
        timeout: float = 10.0,
    ) -> None:
        self._clock = clock
        self._latency = latency
        self.timeout = timeout
        self.available = True
        self._failures_remaining = 0
        self._profiles: dict[str, RemoteRecord] = {}  # keyed by owner
        self._conversations: dict[str, RemoteRecord] = {}
        self._messages: dict[str, RemoteRecord] = {}
        self.conflict_logs: list[ConflictLogEntry] = []
        self.calls: list[tuple[str, str]] = []

    # ========== Test controls ==========

    def fail_next(self, count: int = 1) -> None:
        """Make the next ``count`` calls raise RemoteUnavailableError."""
        self._failures_remaining = count

    def seed(self, record: RemoteRecord) -> RemoteRecord:
        """Place a record directly, as another device would."""
        if record.kind == EntityKind.PROFILE:
            self._profiles[record.owner_id] = record
        elif record.kind == EntityKind.CONVERSATION:
            self._conversations[record.id] = record
        else:
            self._messages[record.id] = record
        return record

    def remove_profile(self, owner_id: str) -> None:
        """Drop a profile row, as an admin or another device would."""
        self._profiles.pop(owner_id, None)

    def profile_of(self, owner_id: str) -> RemoteRecord | None:
        return self._profiles.get(owner_id)

    def conversation(self, conversation_id: str) -> RemoteRecord | None:
        return self._conversations.get(conversation_id)

    async def _call(self, name: str, target: str) -> None:
        self.calls.append((name, target))
        if self._latency:
            await asyncio.sleep(self._latency)
        if not self.available:
            raise RemoteUnavailableError(f"{name}: remote store unreachable")
        if self._failures_remaining > 0:
            self._failures_remaining -= 1
            raise RemoteUnavailableError(f"{name}: injected failure")

    # ========== Profiles ==========

    async def fetch_profile(self, owner_id: str) -> RemoteRecord | None:
        await self._call("fetch_profile", owner_id)
        return self._profiles.get(owner_id)

    async def update_profile(
        self,
        record: RemoteRecord,
        *,
        expected_updated_at: datetime | None = None,
    ) -> RemoteRecord:
        await self._call("update_profile", record.id)
        current = self._profiles.get(record.owner_id)
        if expected_updated_at is not None:
            if current is None or current.id != record.id:
                raise RemoteConflictError(f"profile {record.id} no longer exists", current=None)
            if current.updated_at != expected_updated_at:
                raise RemoteConflictError(f"profile {record.id} changed remotely", current=current)
        return self._write_profile(record, current)

    async def create_profile(self, record: RemoteRecord) -> RemoteRecord:
        await self._call("create_profile", record.id)
        return self._write_profile(record, self._profiles.get(record.owner_id))

    def _write_profile(self, record: RemoteRecord, current: RemoteRecord | None) -> RemoteRecord:
        now = self._clock()
        created_at = current.created_at if current is not None else record.created_at or now
        payload: dict[str, Any] = {**record.payload, "updated_at": now.isoformat()}
        stored = replace(record, payload=payload, updated_at=now, created_at=created_at)
        self._profiles[record.owner_id] = stored
        return stored

    # ========== Conversations & messages ==========

    async def fetch_conversations(self, owner_id: str) -> list[RemoteRecord]:
        await self._call("fetch_conversations", owner_id)
        owned = [c for c in self._conversations.values() if c.owner_id == owner_id]
        return sorted(
            owned,
            key=lambda c: str(c.payload.get("last_message_at") or ""),
            reverse=True,
        )

    async def fetch_messages(self, conversation_id: str) -> list[RemoteRecord]:
        await self._call("fetch_messages", conversation_id)
        matching = [m for m in self._messages.values() if m.parent_id == conversation_id]
        return sorted(matching, key=lambda m: m.created_at or m.updated_at)

    async def delete_conversation(self, conversation_id: str) -> bool:
        await self._call("delete_conversation", conversation_id)
        existed = self._conversations.pop(conversation_id, None) is not None
        self._drop_messages(conversation_id)
        return existed

    async def delete_all_conversations(self, owner_id: str) -> int:
        await self._call("delete_all_conversations", owner_id)
        owned = [c.id for c in self._conversations.values() if c.owner_id == owner_id]
        for conversation_id in owned:
            self._conversations.pop(conversation_id, None)
            self._drop_messages(conversation_id)
        return len(owned)

    async def insert_conflict_log(self, entry: ConflictLogEntry) -> None:
        await self._call("insert_conflict_log", entry.entity_id)
        self.conflict_logs.append(entry)

    def _drop_messages(self, conversation_id: str) -> None:
        doomed = [m.id for m in self._messages.values() if m.parent_id == conversation_id]
        for message_id in doomed:
            del self._messages[message_id]
