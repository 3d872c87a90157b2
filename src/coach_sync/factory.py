"""Wiring of the sync components from configuration."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from coach_sync.remote.http_store import HttpRemoteStore
from coach_sync.storage.sqlite_store import SQLiteReplicaStore
from coach_sync.sync.coordinator import OwnerProvider, SyncCoordinator
from coach_sync.sync.queue import PendingOperationQueue
from coach_sync.sync.reachability import Reachability, ReachabilityProbe
from coach_sync.sync.repository import SyncRepository

if TYPE_CHECKING:
    from coach_sync.config import SyncConfig
    from coach_sync.remote.base import RemoteStore
    from coach_sync.storage.base import ReplicaStore

logger = logging.getLogger(__name__)


@dataclass
class SyncStack:
    """Every long-lived sync component of one signed-in session."""

    store: ReplicaStore
    remote: RemoteStore
    reachability: Reachability
    repository: SyncRepository
    coordinator: SyncCoordinator
    probe: ReachabilityProbe | None = None

    async def aclose(self) -> None:
        await self.coordinator.stop()
        if self.probe is not None:
            await self.probe.stop()
        await self.repository.aclose()
        await self.remote.close()
        await self.store.close()


async def create_sync_stack(
    config: SyncConfig,
    *,
    owner_provider: OwnerProvider = lambda: None,
    store: ReplicaStore | None = None,
    remote: RemoteStore | None = None,
    reachability: Reachability | None = None,
    start_probe: bool = False,
) -> SyncStack:
    """
    Build and start the sync components described by ``config``.

    Args:
        config: Loaded configuration
        owner_provider: Returns the signed-in user id, or None
        store: Replica to use instead of the configured SQLite file
        remote: Remote store to use instead of the configured HTTP client
        reachability: Shared connectivity signal (created offline if omitted)
        start_probe: Poll the configured probe URL in the background

    Examples:
        config = SyncConfig.load()
        stack = await create_sync_stack(config, owner_provider=lambda: user_id)
        profile = await stack.repository.fetch_profile(user_id)
        await stack.aclose()
    """
    if store is None:
        store = SQLiteReplicaStore(config.replica_db_path)
    await store.initialize()

    if remote is None:
        if not config.remote.is_configured:
            raise ValueError("remote.url is not configured")
        remote = HttpRemoteStore(
            config.remote.url,
            api_key=config.remote.api_key or None,
            timeout=config.remote.timeout,
        )

    reachability = reachability or Reachability()
    queue = PendingOperationQueue(
        store,
        reachability=reachability,
        max_retries=config.sync.max_retries,
        max_age=config.sync.max_operation_age,
        batch_size=config.sync.drain_batch_size,
    )
    repository = SyncRepository(store, remote, reachability, queue=queue)
    coordinator = SyncCoordinator(
        repository,
        reachability,
        owner_provider=owner_provider,
        debounce_seconds=config.sync.debounce_seconds,
    )
    coordinator.start()

    probe = None
    if start_probe and config.probe_url:
        headers = {"apikey": config.remote.api_key} if config.remote.api_key else None
        probe = ReachabilityProbe(
            reachability,
            config.probe_url,
            interval=config.reachability.probe_interval,
            headers=headers,
        )
        probe.start()

    logger.debug("Sync stack ready (replica %s)", config.replica_db_path)
    return SyncStack(
        store=store,
        remote=remote,
        reachability=reachability,
        repository=repository,
        coordinator=coordinator,
        probe=probe,
    )
