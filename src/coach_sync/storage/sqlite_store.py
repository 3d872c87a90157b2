"""SQLite storage backend for the persistent local replica."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import aiosqlite

from coach_sync.errors import CacheError
from coach_sync.storage.base import ReplicaStore
from coach_sync.storage.sqlite_conflict_log import SQLiteConflictLogMixin
from coach_sync.storage.sqlite_entities import SQLiteEntityMixin
from coach_sync.storage.sqlite_pending_ops import SQLitePendingOpsMixin
from coach_sync.storage.sqlite_schema import SCHEMA, SCHEMA_VERSION, run_migrations

logger = logging.getLogger(__name__)


class SQLiteReplicaStore(
    SQLiteEntityMixin,
    SQLitePendingOpsMixin,
    SQLiteConflictLogMixin,
    ReplicaStore,
):
    """SQLite-backed replica that survives restarts.

    One connection serves reads and writes. Every mutation runs under a
    single asyncio.Lock and commits before releasing it, so writes from
    concurrent coroutines never interleave.
    """

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path).resolve()
        self._conn: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    @property
    def db_path(self) -> Path:
        return self._db_path

    async def initialize(self) -> None:
        """Open the connection, migrate older databases, apply the schema."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            self._conn = await aiosqlite.connect(self._db_path)
            self._conn.row_factory = aiosqlite.Row

            await self._conn.execute("PRAGMA journal_mode=WAL")
            await self._conn.execute("PRAGMA synchronous=NORMAL")

            # Ensure version table exists so we can read the current version
            await self._conn.execute(
                "CREATE TABLE IF NOT EXISTS schema_version (version INTEGER PRIMARY KEY)"
            )
            await self._conn.commit()

            async with self._conn.execute("SELECT version FROM schema_version") as cursor:
                row = await cursor.fetchone()

            if row is not None and row["version"] < SCHEMA_VERSION:
                await run_migrations(self._conn, row["version"])

            # Full schema: CREATE TABLE/INDEX IF NOT EXISTS (safe after migration)
            await self._conn.executescript(SCHEMA)

            # Stamp version for brand-new databases
            if row is None:
                await self._conn.execute(
                    "INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,)
                )
                await self._conn.commit()
        except sqlite3.Error as e:
            raise CacheError(f"Failed to open replica at {self._db_path}: {e}") from e

        logger.debug("Replica store ready at %s", self._db_path)

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None

    async def __aenter__(self) -> SQLiteReplicaStore:
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _ensure_conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise CacheError("Replica store not initialized. Call initialize() first.")
        return self._conn

    @asynccontextmanager
    async def _writing(self) -> AsyncIterator[aiosqlite.Connection]:
        """Serialized mutation: lock, run, commit (or roll back)."""
        async with self._write_lock:
            conn = self._ensure_conn()
            try:
                yield conn
                await conn.commit()
            except (sqlite3.Error, ValueError) as e:
                await self._rollback_quietly(conn)
                raise CacheError(f"Replica write failed: {e}") from e

    @asynccontextmanager
    async def _reading(self) -> AsyncIterator[aiosqlite.Connection]:
        conn = self._ensure_conn()
        try:
            yield conn
        except (sqlite3.Error, ValueError) as e:
            raise CacheError(f"Replica read failed: {e}") from e

    @staticmethod
    async def _rollback_quietly(conn: aiosqlite.Connection) -> None:
        try:
            await conn.rollback()
        except sqlite3.Error:
            logger.debug("Rollback after failed write also failed", exc_info=True)

    async def clear(self) -> None:
        async with self._writing() as conn:
            await conn.execute("DELETE FROM cached_entities")
            await conn.execute("DELETE FROM pending_operations")
            await conn.execute("DELETE FROM conflict_log")
