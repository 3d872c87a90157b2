"""Per-entity asyncio locks."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

EntityKey = tuple[str, str]


class EntityLocks:
    """Lazily created locks keyed by ``(entity_kind, entity_id)``.

    A mutation to an entity waits for any in-flight mutation to the same
    entity; different entities never contend. Locks are dropped once no
    coroutine holds or awaits them.
    """

    def __init__(self) -> None:
        self._locks: dict[EntityKey, asyncio.Lock] = {}
        self._users: dict[EntityKey, int] = {}

    @asynccontextmanager
    async def hold(self, entity_kind: str, entity_id: str) -> AsyncIterator[None]:
        key = (str(entity_kind), entity_id)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def is_locked(self, entity_kind: str, entity_id: str) -> bool:
        lock = self._locks.get((str(entity_kind), entity_id))
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
