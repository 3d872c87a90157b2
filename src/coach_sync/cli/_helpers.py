"""Shared CLI helpers for configuration, replica access, and output formatting."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from collections.abc import Coroutine
from typing import Any, TypeVar

import typer

from coach_sync.config import SyncConfig
from coach_sync.storage.sqlite_store import SQLiteReplicaStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Stores opened during a CLI command; closed before the event loop shuts
# down so aiosqlite's worker thread does not outlive it.
_active_stores: list[SQLiteReplicaStore] = []


def get_config() -> SyncConfig:
    """Get CLI configuration and apply its logging level."""
    config = SyncConfig.load()
    setup_logging(config.logging.level)
    return config


def setup_logging(level: str) -> None:
    """Log to stderr so ``--json`` output on stdout stays parseable."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Run an async CLI command, closing any opened replica first."""

    async def _with_cleanup() -> T:
        try:
            return await coro
        finally:
            for store in _active_stores:
                try:
                    await store.close()
                except Exception:
                    logger.debug("Failed to close replica during cleanup", exc_info=True)
            _active_stores.clear()
            await asyncio.sleep(0)

    return asyncio.run(_with_cleanup())


async def open_store(config: SyncConfig) -> SQLiteReplicaStore:
    """Open (creating if needed) the replica described by ``config``."""
    store = SQLiteReplicaStore(config.replica_db_path)
    await store.initialize()
    _active_stores.append(store)
    return store


def output_result(data: dict[str, Any], as_json: bool = False) -> None:
    """Output result in appropriate format."""
    if as_json:
        typer.echo(json.dumps(data, indent=2, default=str))
    elif "error" in data:
        typer.secho(f"Error: {data['error']}", fg=typer.colors.RED)
    elif "message" in data:
        typer.secho(data["message"], fg=typer.colors.GREEN)
    else:
        typer.echo(str(data))
