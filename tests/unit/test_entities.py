"""Unit tests for cached entities, pending operations and conflict records."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import pytest

from coach_sync.core.conflicts import ConflictLogEntry, ConflictType, Resolution
from coach_sync.core.entities import (
    UNEDITED,
    CachedEntity,
    Edited,
    EntityKind,
    SyncStatus,
    local_edit_from,
)
from coach_sync.core.operations import OperationKind, OperationStatus, PendingOperation
from coach_sync.utils.timeutils import ensure_utc, format_timestamp, parse_timestamp

T0 = datetime(2026, 1, 5, 9, 0, tzinfo=UTC)


def _profile(**overrides: object) -> CachedEntity:
    fields: dict[str, object] = {
        "kind": EntityKind.PROFILE,
        "remote_id": "profile-1",
        "owner_id": "user-1",
        "payload": {"coaching_goals": "sleep more"},
        "remote_updated_at": T0,
        "cached_at": T0,
    }
    fields.update(overrides)
    return CachedEntity(**fields)  # type: ignore[arg-type]


class TestTimestamps:
    """Tests for the UTC helpers."""

    def test_parse_z_suffix(self) -> None:
        assert parse_timestamp("2026-01-05T09:00:00Z") == T0

    def test_parse_offset_converted_to_utc(self) -> None:
        parsed = parse_timestamp("2026-01-05T11:00:00+02:00")
        assert parsed == T0
        assert parsed is not None and parsed.tzinfo == UTC

    def test_naive_assumed_utc(self) -> None:
        assert ensure_utc(datetime(2026, 1, 5, 9, 0)) == T0

    def test_empty_values(self) -> None:
        assert parse_timestamp(None) is None
        assert parse_timestamp("") is None
        assert format_timestamp(None) is None

    def test_aware_datetime_passthrough(self) -> None:
        plus_one = datetime(2026, 1, 5, 10, 0, tzinfo=timezone(timedelta(hours=1)))
        assert parse_timestamp(plus_one) == T0


class TestCachedEntity:
    """Tests for CachedEntity state transitions."""

    def test_defaults_are_synced_and_unedited(self) -> None:
        entity = _profile()
        assert entity.sync_status == SyncStatus.SYNCED
        assert entity.local_edit is UNEDITED
        assert entity.has_local_edit is False
        assert entity.is_pending is False

    def test_mark_pending_stamps_local_edit(self) -> None:
        edited_at = T0 + timedelta(minutes=5)
        pending = _profile().mark_pending(edited_at)

        assert pending.local_edit == Edited(at=edited_at)
        assert pending.sync_status == SyncStatus.PENDING
        assert pending.is_pending is True
        assert pending.remote_updated_at == T0

    def test_transitions_return_new_instances(self) -> None:
        original = _profile()
        original.mark_pending(T0 + timedelta(minutes=1))
        assert original.sync_status == SyncStatus.SYNCED

    def test_mark_synced_clears_edit(self) -> None:
        later = T0 + timedelta(hours=1)
        synced = (
            _profile()
            .mark_pending(T0 + timedelta(minutes=1))
            .mark_synced(remote_updated_at=later, payload={"coaching_goals": "run"})
        )

        assert synced.local_edit is UNEDITED
        assert synced.sync_status == SyncStatus.SYNCED
        assert synced.remote_updated_at == later
        assert synced.payload == {"coaching_goals": "run"}

    def test_mark_conflict_keeps_edit(self) -> None:
        conflicted = _profile().mark_pending(T0 + timedelta(minutes=1)).mark_conflict()
        assert conflicted.sync_status == SyncStatus.CONFLICT
        assert conflicted.has_local_edit is True
        assert conflicted.is_pending is True

    def test_tombstone(self) -> None:
        conversation = _profile(kind=EntityKind.CONVERSATION, remote_id="conv-1")
        deleted_at = T0 + timedelta(minutes=3)
        tombstone = conversation.tombstone(deleted_at)

        assert tombstone.deleted is True
        assert tombstone.is_pending is True
        assert tombstone.local_edit == Edited(at=deleted_at)

    def test_with_payload_copies(self) -> None:
        payload = {"coaching_goals": "hydrate"}
        updated = _profile().with_payload(payload)
        payload["coaching_goals"] = "changed"
        assert updated.payload == {"coaching_goals": "hydrate"}

    def test_dict_roundtrip_preserves_local_edit(self) -> None:
        pending = _profile(parent_id=None).mark_pending(T0 + timedelta(seconds=30))
        restored = CachedEntity.from_dict(pending.to_dict())
        assert restored == pending

    def test_from_dict_requires_remote_updated_at(self) -> None:
        data = _profile().to_dict()
        data["remote_updated_at"] = None
        with pytest.raises(ValueError):
            CachedEntity.from_dict(data)

    def test_local_edit_from_storage(self) -> None:
        assert local_edit_from(None) is UNEDITED
        assert local_edit_from("2026-01-05T09:00:00+00:00") == Edited(at=T0)


class TestPendingOperation:
    """Tests for PendingOperation."""

    def test_create_assigns_unique_ids(self) -> None:
        a = PendingOperation.create(
            OperationKind.UPDATE_PROFILE, EntityKind.PROFILE, "profile-1", "user-1"
        )
        b = PendingOperation.create(
            OperationKind.UPDATE_PROFILE, EntityKind.PROFILE, "profile-1", "user-1"
        )
        assert a.operation_id != b.operation_id
        assert a.sequence == 0
        assert a.status == OperationStatus.PENDING
        assert a.retry_count == 0

    def test_create_copies_payload(self) -> None:
        payload = {"coaching_goals": "stretch"}
        op = PendingOperation.create(
            OperationKind.UPDATE_PROFILE,
            EntityKind.PROFILE,
            "profile-1",
            "user-1",
            payload=payload,
        )
        payload.clear()
        assert op.payload == {"coaching_goals": "stretch"}

    def test_dict_roundtrip(self) -> None:
        op = PendingOperation.create(
            OperationKind.DELETE_CONVERSATION,
            EntityKind.CONVERSATION,
            "conv-1",
            "user-1",
            base_remote_updated_at=T0,
            enqueued_at=T0 + timedelta(minutes=1),
        )
        assert PendingOperation.from_dict(op.to_dict()) == op


class TestConflictLogEntry:
    """Tests for the remote row projection."""

    def test_remote_row_has_no_content(self) -> None:
        entry = ConflictLogEntry(
            entity_type="context_profile",
            entity_id="profile-1",
            conflict_type=ConflictType.TIMESTAMP_MISMATCH,
            resolution=Resolution.LOCAL_WINS,
            local_timestamp=T0 + timedelta(minutes=1),
            remote_timestamp=T0,
            resolved_at=T0 + timedelta(minutes=2),
            owner_id="user-1",
        )
        row = entry.to_remote_row()

        assert row == {
            "user_id": "user-1",
            "record_type": "context_profile",
            "record_id": "profile-1",
            "conflict_type": "timestamp_mismatch",
            "resolution": "local_wins",
            "local_timestamp": "2026-01-05T09:01:00+00:00",
            "remote_timestamp": "2026-01-05T09:00:00+00:00",
            "resolved_at": "2026-01-05T09:02:00+00:00",
        }
