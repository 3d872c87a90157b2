"""SQLite schema definition for the local replica."""

from __future__ import annotations

import logging
import sqlite3
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import aiosqlite

logger = logging.getLogger(__name__)

# Schema version for migrations
SCHEMA_VERSION = 2

# ── Migrations ──────────────────────────────────────────────────────
# Each entry maps (from_version -> to_version) with a list of SQL statements.
# Migrations run sequentially in initialize() when db version < SCHEMA_VERSION.

MIGRATIONS: dict[tuple[int, int], list[str]] = {
    (1, 2): [
        # Dead-letter support for the operation queue
        "ALTER TABLE pending_operations ADD COLUMN status TEXT NOT NULL DEFAULT 'pending'",
        "ALTER TABLE pending_operations ADD COLUMN last_error TEXT",
        # Remote upload tracking for the conflict log
        "ALTER TABLE conflict_log ADD COLUMN uploaded INTEGER NOT NULL DEFAULT 0",
    ],
}


async def run_migrations(conn: aiosqlite.Connection, current_version: int) -> int:
    """Apply all pending migrations from current_version to SCHEMA_VERSION.

    Returns the final schema version after all migrations.
    """
    version = current_version

    while version < SCHEMA_VERSION:
        next_version = version + 1
        statements = MIGRATIONS.get((version, next_version), [])

        for sql in statements:
            try:
                await conn.execute(sql)
            except sqlite3.OperationalError as e:
                # Column may already exist after a partial migration.
                if "duplicate column" in str(e).lower() or "already exists" in str(e).lower():
                    logger.debug("Migration already applied: %s", e)
                else:
                    raise

        version = next_version

    await conn.execute("UPDATE schema_version SET version = ?", (SCHEMA_VERSION,))
    await conn.commit()

    return version


SCHEMA = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

-- Cached copies of remote entities
CREATE TABLE IF NOT EXISTS cached_entities (
    kind TEXT NOT NULL,
    remote_id TEXT NOT NULL,
    owner_id TEXT NOT NULL,
    parent_id TEXT,
    payload TEXT NOT NULL DEFAULT '{}',  -- JSON
    remote_updated_at TEXT NOT NULL,
    local_edited_at TEXT,  -- NULL unless an offline edit is unconfirmed
    cached_at TEXT NOT NULL,
    sync_status TEXT NOT NULL DEFAULT 'synced',
    deleted INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (kind, remote_id)
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_entities_profile_owner
    ON cached_entities(owner_id) WHERE kind = 'context_profile';
CREATE INDEX IF NOT EXISTS idx_entities_owner ON cached_entities(kind, owner_id);
CREATE INDEX IF NOT EXISTS idx_entities_parent ON cached_entities(kind, parent_id);

-- Offline mutations awaiting replay (seq defines FIFO order)
CREATE TABLE IF NOT EXISTS pending_operations (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    operation_id TEXT NOT NULL UNIQUE,
    kind TEXT NOT NULL,
    entity_kind TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    owner_id TEXT NOT NULL,
    payload TEXT NOT NULL DEFAULT '{}',  -- JSON
    base_remote_updated_at TEXT,
    enqueued_at TEXT NOT NULL,
    retry_count INTEGER NOT NULL DEFAULT 0,
    status TEXT NOT NULL DEFAULT 'pending',
    last_error TEXT
);
CREATE INDEX IF NOT EXISTS idx_operations_status ON pending_operations(status, seq);
CREATE INDEX IF NOT EXISTS idx_operations_entity
    ON pending_operations(entity_kind, entity_id, status);

-- Conflict decisions (ids and timestamps only)
CREATE TABLE IF NOT EXISTS conflict_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    owner_id TEXT,
    entity_type TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    conflict_type TEXT NOT NULL,
    resolution TEXT NOT NULL,
    local_timestamp TEXT,
    remote_timestamp TEXT,
    resolved_at TEXT NOT NULL,
    uploaded INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_conflict_log_uploaded ON conflict_log(uploaded, id);
"""
