"""Tests for sync/resolver.py: deterministic conflict decisions."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

import pytest

from coach_sync.core.conflicts import ConflictType, Resolution
from coach_sync.core.entities import CachedEntity, EntityKind
from coach_sync.remote.base import RemoteRecord
from coach_sync.sync.resolver import ConflictResolver

T0 = datetime(2026, 1, 5, 9, 0, tzinfo=UTC)
NOW = T0 + timedelta(hours=2)


@pytest.fixture
def resolver() -> ConflictResolver:
    return ConflictResolver(clock=lambda: NOW)


def _cached(kind: EntityKind, updated_at: datetime = T0, **payload: object) -> CachedEntity:
    return CachedEntity(
        kind=kind,
        remote_id=f"{kind.value}-1",
        owner_id="user-1",
        payload=dict(payload),
        remote_updated_at=updated_at,
        cached_at=updated_at,
    )


def _remote(
    kind: EntityKind,
    updated_at: datetime,
    created_at: datetime | None = None,
    **payload: object,
) -> RemoteRecord:
    return RemoteRecord(
        kind=kind,
        id=f"{kind.value}-1",
        owner_id="user-1",
        payload=dict(payload),
        updated_at=updated_at,
        created_at=created_at,
    )


# ─────────── Conversations ───────────


class TestConversations:
    """Server timestamp is authoritative."""

    def test_same_timestamp_is_no_conflict(self, resolver: ConflictResolver) -> None:
        result = resolver.resolve_conversation(
            _cached(EntityKind.CONVERSATION), _remote(EntityKind.CONVERSATION, T0)
        )
        assert result.resolution == Resolution.NO_CONFLICT
        assert result.log_entry is None

    def test_newer_remote_wins(self, resolver: ConflictResolver) -> None:
        later = T0 + timedelta(minutes=10)
        result = resolver.resolve_conversation(
            _cached(EntityKind.CONVERSATION), _remote(EntityKind.CONVERSATION, later)
        )

        assert result.server_wins
        entry = result.log_entry
        assert entry is not None
        assert entry.conflict_type == ConflictType.TIMESTAMP_MISMATCH
        assert entry.local_timestamp == T0
        assert entry.remote_timestamp == later
        assert entry.resolved_at == NOW
        assert entry.owner_id == "user-1"

    def test_older_remote_still_wins(self, resolver: ConflictResolver) -> None:
        earlier = T0 - timedelta(minutes=10)
        result = resolver.resolve_conversation(
            _cached(EntityKind.CONVERSATION), _remote(EntityKind.CONVERSATION, earlier)
        )
        assert result.server_wins


# ─────────── Messages ───────────


class TestMessages:
    """Messages are immutable; any difference means the server copy wins."""

    def test_identical_message(self, resolver: ConflictResolver) -> None:
        local = _cached(EntityKind.MESSAGE, content="hi", created_at=T0.isoformat())
        remote = _remote(EntityKind.MESSAGE, T0, created_at=T0, content="hi")

        assert resolver.resolve_message(local, remote).resolution == Resolution.NO_CONFLICT

    def test_content_mismatch(self, resolver: ConflictResolver) -> None:
        local = _cached(EntityKind.MESSAGE, content="hi", created_at=T0.isoformat())
        remote = _remote(EntityKind.MESSAGE, T0, created_at=T0, content="hello")

        result = resolver.resolve_message(local, remote)

        assert result.server_wins
        assert result.log_entry is not None
        assert result.log_entry.conflict_type == ConflictType.DATA_MISMATCH

    def test_created_at_mismatch(self, resolver: ConflictResolver) -> None:
        local = _cached(EntityKind.MESSAGE, content="hi", created_at=T0.isoformat())
        shifted = T0 + timedelta(seconds=1)
        remote = _remote(EntityKind.MESSAGE, shifted, created_at=shifted, content="hi")

        result = resolver.resolve_message(local, remote)

        assert result.server_wins
        assert result.log_entry is not None
        assert result.log_entry.local_timestamp == T0
        assert result.log_entry.remote_timestamp == shifted

    def test_falls_back_to_remote_updated_at(self, resolver: ConflictResolver) -> None:
        local = _cached(EntityKind.MESSAGE, content="hi")
        remote = _remote(EntityKind.MESSAGE, T0, content="hi")

        assert resolver.resolve_message(local, remote).resolution == Resolution.NO_CONFLICT


# ─────────── Profiles ───────────


class TestProfiles:
    """Newer of local edit and remote modification wins."""

    def test_unedited_follows_server_silently(self, resolver: ConflictResolver) -> None:
        result = resolver.resolve_profile(
            _cached(EntityKind.PROFILE), _remote(EntityKind.PROFILE, T0 + timedelta(hours=1))
        )
        assert result.server_wins
        assert result.log_entry is None

    def test_newer_local_edit_wins(self, resolver: ConflictResolver) -> None:
        edited = _cached(EntityKind.PROFILE).mark_pending(T0 + timedelta(minutes=30))
        result = resolver.resolve_profile(
            edited, _remote(EntityKind.PROFILE, T0 + timedelta(minutes=10))
        )

        assert result.local_wins
        assert result.log_entry is not None
        assert result.log_entry.local_timestamp == T0 + timedelta(minutes=30)

    def test_newer_remote_wins(self, resolver: ConflictResolver) -> None:
        edited = _cached(EntityKind.PROFILE).mark_pending(T0 + timedelta(minutes=10))
        result = resolver.resolve_profile(
            edited, _remote(EntityKind.PROFILE, T0 + timedelta(minutes=30))
        )

        assert result.server_wins
        assert result.log_entry is not None
        assert result.log_entry.conflict_type == ConflictType.TIMESTAMP_MISMATCH

    def test_equal_timestamps(self, resolver: ConflictResolver) -> None:
        at = T0 + timedelta(minutes=10)
        edited = _cached(EntityKind.PROFILE).mark_pending(at)

        result = resolver.resolve_profile(edited, _remote(EntityKind.PROFILE, at))
        assert result.resolution == Resolution.NO_CONFLICT

    def test_resolve_dispatches_on_kind(self, resolver: ConflictResolver) -> None:
        edited = _cached(EntityKind.PROFILE).mark_pending(T0 + timedelta(minutes=30))
        result = resolver.resolve(edited, _remote(EntityKind.PROFILE, T0 + timedelta(minutes=10)))
        assert result.local_wins

        conversation = _cached(EntityKind.CONVERSATION)
        result = resolver.resolve(conversation, _remote(EntityKind.CONVERSATION, NOW))
        assert result.server_wins


# ─────────── Missing copies ───────────


class TestMissing:
    """One side no longer has the entity."""

    def test_missing_remote_edited_profile_is_kept(self, resolver: ConflictResolver) -> None:
        edited = _cached(EntityKind.PROFILE).mark_pending(T0 + timedelta(minutes=5))
        result = resolver.resolve_missing_remote(edited)

        assert result.local_wins
        assert result.log_entry is not None
        assert result.log_entry.conflict_type == ConflictType.MISSING_REMOTE
        assert result.log_entry.remote_timestamp is None

    def test_missing_remote_conversation_dropped(self, resolver: ConflictResolver) -> None:
        result = resolver.resolve_missing_remote(_cached(EntityKind.CONVERSATION))
        assert result.server_wins

    def test_missing_local(self, resolver: ConflictResolver) -> None:
        result = resolver.resolve_missing_local(_remote(EntityKind.PROFILE, T0))

        assert result.server_wins
        assert result.log_entry is not None
        assert result.log_entry.conflict_type == ConflictType.MISSING_LOCAL
        assert result.log_entry.local_timestamp is None


class TestLogging:
    """Every logged decision emits one DEBUG record."""

    def test_debug_record_with_identifiers(
        self, resolver: ConflictResolver, caplog: pytest.LogCaptureFixture
    ) -> None:
        caplog.set_level(logging.DEBUG, logger="coach_sync.sync.resolver")
        resolver.resolve_conversation(
            _cached(EntityKind.CONVERSATION, title="private"),
            _remote(EntityKind.CONVERSATION, NOW, title="private"),
        )

        records = [r for r in caplog.records if r.name == "coach_sync.sync.resolver"]
        assert len(records) == 1
        assert records[0].levelno == logging.DEBUG
        assert records[0].entity_id == "conversation-1"  # type: ignore[attr-defined]
        assert "private" not in records[0].getMessage()

    def test_no_record_without_conflict(
        self, resolver: ConflictResolver, caplog: pytest.LogCaptureFixture
    ) -> None:
        caplog.set_level(logging.DEBUG, logger="coach_sync.sync.resolver")
        resolver.resolve_conversation(
            _cached(EntityKind.CONVERSATION), _remote(EntityKind.CONVERSATION, T0)
        )
        assert not [r for r in caplog.records if r.name == "coach_sync.sync.resolver"]
