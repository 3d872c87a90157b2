"""Pytest configuration and fixtures."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
import pytest_asyncio

from coach_sync.remote.memory_remote import InMemoryRemoteStore
from coach_sync.storage.memory_store import InMemoryReplicaStore
from coach_sync.storage.sqlite_store import SQLiteReplicaStore
from coach_sync.sync.reachability import Reachability
from coach_sync.sync.repository import SyncRepository


class FakeClock:
    """Manually advanced clock; every read returns the same instant until advanced."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 5, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 1.0) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def remote(clock: FakeClock) -> InMemoryRemoteStore:
    """Remote store stamping writes with the shared fake clock."""
    return InMemoryRemoteStore(clock=clock)


@pytest.fixture
def store() -> InMemoryReplicaStore:
    return InMemoryReplicaStore()


@pytest_asyncio.fixture
async def sqlite_store(tmp_path: Path) -> AsyncGenerator[SQLiteReplicaStore, None]:
    """Create a temporary SQLite replica."""
    replica = SQLiteReplicaStore(tmp_path / "replica.db")
    await replica.initialize()
    yield replica
    await replica.close()


@pytest.fixture
def reachability() -> Reachability:
    """Connectivity signal that starts online."""
    return Reachability(connected=True)


@pytest_asyncio.fixture
async def repository(
    store: InMemoryReplicaStore,
    remote: InMemoryRemoteStore,
    reachability: Reachability,
    clock: FakeClock,
) -> AsyncGenerator[SyncRepository, None]:
    repo = SyncRepository(store, remote, reachability, clock=clock)
    yield repo
    await repo.aclose()
    await repo.notifier.wait_idle()
