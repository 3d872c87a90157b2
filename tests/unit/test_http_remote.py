"""Tests for remote/http_store.py: PostgREST client over aiohttp."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from coach_sync.core.conflicts import ConflictLogEntry, ConflictType, Resolution
from coach_sync.core.entities import EntityKind
from coach_sync.core.operations import OperationKind, OperationStatus, PendingOperation
from coach_sync.errors import RemoteConflictError, RemoteStoreError, RemoteUnavailableError
from coach_sync.remote.base import RemoteRecord
from coach_sync.remote.http_store import HttpRemoteStore, row_to_record
from coach_sync.storage.memory_store import InMemoryReplicaStore
from coach_sync.sync.queue import PendingOperationQueue
from coach_sync.sync.reachability import Reachability
from coach_sync.sync.repository import SyncRepository

T0 = datetime(2026, 1, 5, 9, 0, tzinfo=UTC)
T1 = datetime(2026, 1, 5, 9, 30, tzinfo=UTC)

PROFILE_ROW = {
    "id": "profile-1",
    "user_id": "user-1",
    "coaching_goals": "sleep better",
    "created_at": "2026-01-01T08:00:00+00:00",
    "updated_at": "2026-01-05T09:00:00Z",
}


def _response(status: int = 200, body: Any = None, text: str = "") -> AsyncMock:
    response = AsyncMock()
    response.status = status
    response.json = AsyncMock(return_value=body)
    response.text = AsyncMock(return_value=text)
    response.__aenter__ = AsyncMock(return_value=response)
    response.__aexit__ = AsyncMock(return_value=False)
    return response


def _store(*responses: AsyncMock) -> tuple[HttpRemoteStore, MagicMock]:
    remote = HttpRemoteStore("https://project.example.co/", api_key="anon-key")
    session = AsyncMock()
    session.request = MagicMock(side_effect=list(responses))
    remote._session = session
    return remote, session.request


def _profile(updated_at: datetime = T1) -> RemoteRecord:
    return RemoteRecord(
        kind=EntityKind.PROFILE,
        id="profile-1",
        owner_id="user-1",
        payload={"id": "profile-1", "user_id": "user-1", "coaching_goals": "run a 10k"},
        updated_at=updated_at,
    )


# ─────────── Row mapping ───────────


class TestRowToRecord:
    """Rows become records with parsed timestamps."""

    def test_profile_row(self) -> None:
        record = row_to_record(EntityKind.PROFILE, PROFILE_ROW)

        assert record.id == "profile-1"
        assert record.owner_id == "user-1"
        assert record.updated_at == T0
        assert record.created_at == datetime(2026, 1, 1, 8, 0, tzinfo=UTC)
        assert record.payload["coaching_goals"] == "sleep better"

    def test_message_uses_created_at_and_parent(self) -> None:
        row = {
            "id": 7,
            "user_id": "user-1",
            "conversation_id": "conv-1",
            "content": "hi",
            "created_at": "2026-01-05T09:00:00+00:00",
        }
        record = row_to_record(EntityKind.MESSAGE, row)

        assert record.id == "7"
        assert record.parent_id == "conv-1"
        assert record.updated_at == T0

    def test_row_without_timestamps(self) -> None:
        with pytest.raises(RemoteStoreError):
            row_to_record(EntityKind.CONVERSATION, {"id": "c1", "user_id": "user-1"})


# ─────────── Request plumbing ───────────


class TestRequests:
    """Headers, URLs and status mapping."""

    def test_headers(self) -> None:
        remote = HttpRemoteStore("https://project.example.co", api_key="anon-key")
        headers = remote._get_headers()

        assert headers["apikey"] == "anon-key"
        assert headers["Authorization"] == "Bearer anon-key"
        assert headers["Prefer"] == "return=representation"

        remote.set_access_token("user-jwt")
        assert remote._get_headers()["Authorization"] == "Bearer user-jwt"

    def test_no_credentials(self) -> None:
        headers = HttpRemoteStore("https://project.example.co")._get_headers()
        assert "apikey" not in headers
        assert "Authorization" not in headers

    @pytest.mark.asyncio
    async def test_fetch_profile_query(self) -> None:
        remote, request = _store(_response(body=[PROFILE_ROW]))

        record = await remote.fetch_profile("user-1")

        assert record is not None and record.id == "profile-1"
        method, url = request.call_args.args
        assert method == "GET"
        assert url == "https://project.example.co/rest/v1/context_profiles"
        assert request.call_args.kwargs["params"]["user_id"] == "eq.user-1"

    @pytest.mark.asyncio
    async def test_fetch_profile_missing(self) -> None:
        remote, _ = _store(_response(body=[]))
        assert await remote.fetch_profile("user-1") is None

    @pytest.mark.asyncio
    async def test_server_error_is_unavailable(self) -> None:
        remote, _ = _store(_response(status=503, text="maintenance"))

        with pytest.raises(RemoteUnavailableError) as exc_info:
            await remote.fetch_conversations("user-1")
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_client_error_is_rejection(self) -> None:
        remote, _ = _store(_response(status=403, text="permission denied"))

        with pytest.raises(RemoteStoreError) as exc_info:
            await remote.fetch_conversations("user-1")
        assert not isinstance(exc_info.value, RemoteUnavailableError)
        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_network_error_is_unavailable(self) -> None:
        remote = HttpRemoteStore("https://project.example.co")
        session = AsyncMock()
        session.request = MagicMock(side_effect=aiohttp.ClientConnectionError("refused"))
        remote._session = session

        with pytest.raises(RemoteUnavailableError):
            await remote.fetch_messages("conv-1")

    @pytest.mark.asyncio
    async def test_no_content(self) -> None:
        remote, _ = _store(_response(status=204))
        assert await remote.delete_conversation("conv-1") is False

    @pytest.mark.asyncio
    async def test_connect_on_first_request(self) -> None:
        remote = HttpRemoteStore("https://project.example.co")
        session = AsyncMock()
        session.request = MagicMock(return_value=_response(body=[]))

        with patch("aiohttp.ClientSession", return_value=session):
            await remote.fetch_conversations("user-1")
            assert remote.is_connected
            await remote.close()

        session.close.assert_awaited_once()
        assert not remote.is_connected


# ─────────── Profile writes ───────────


class TestProfileWrites:
    """Conditional PATCH, conflicts and upsert fallback."""

    @pytest.mark.asyncio
    async def test_conditional_update(self) -> None:
        stored = {**PROFILE_ROW, "coaching_goals": "run a 10k", "updated_at": T1.isoformat()}
        remote, request = _store(_response(body=[stored]))

        record = await remote.update_profile(_profile(), expected_updated_at=T0)

        assert record.updated_at == T1
        kwargs = request.call_args.kwargs
        assert request.call_args.args[0] == "PATCH"
        assert kwargs["params"] == {"id": "eq.profile-1", "updated_at": f"eq.{T0.isoformat()}"}
        assert kwargs["json"]["coaching_goals"] == "run a 10k"
        assert kwargs["json"]["updated_at"] == T1.isoformat()
        assert "id" not in kwargs["json"]
        assert "user_id" not in kwargs["json"]

    @pytest.mark.asyncio
    async def test_version_moved_raises_conflict(self) -> None:
        newer = {**PROFILE_ROW, "updated_at": "2026-01-05T10:00:00+00:00"}
        remote, _ = _store(_response(body=[]), _response(body=[newer]))

        with pytest.raises(RemoteConflictError) as exc_info:
            await remote.update_profile(_profile(), expected_updated_at=T0)

        assert exc_info.value.status_code == 409
        assert exc_info.value.current is not None
        assert exc_info.value.current.updated_at == datetime(2026, 1, 5, 10, 0, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_deleted_row_raises_conflict_without_current(self) -> None:
        remote, _ = _store(_response(body=[]), _response(body=[]))

        with pytest.raises(RemoteConflictError) as exc_info:
            await remote.update_profile(_profile(), expected_updated_at=T0)
        assert exc_info.value.current is None

    @pytest.mark.asyncio
    async def test_unconditional_update_of_missing_row_inserts(self) -> None:
        created = {**PROFILE_ROW, "updated_at": T1.isoformat()}
        remote, request = _store(_response(body=[]), _response(body=[]), _response(body=[created]))

        record = await remote.update_profile(_profile())

        assert record.updated_at == T1
        method = request.call_args.args[0]
        kwargs = request.call_args.kwargs
        assert method == "POST"
        assert kwargs["params"] == {"on_conflict": "user_id"}
        assert kwargs["json"]["user_id"] == "user-1"
        assert "merge-duplicates" in kwargs["headers"]["Prefer"]


class TestConflictLogUpload:
    """Conflict entries map onto the remote log table."""

    @pytest.mark.asyncio
    async def test_insert_conflict_log(self) -> None:
        remote, request = _store(_response(status=201, body=[]))
        entry = ConflictLogEntry(
            entity_type="conversation",
            entity_id="conv-1",
            conflict_type=ConflictType.TIMESTAMP_MISMATCH,
            resolution=Resolution.SERVER_WINS,
            local_timestamp=T0,
            remote_timestamp=T1,
            resolved_at=T1,
            owner_id="user-1",
        )

        await remote.insert_conflict_log(entry)

        assert request.call_args.args[1].endswith("/rest/v1/sync_conflict_logs")
        row = request.call_args.kwargs["json"]
        assert row["record_type"] == "conversation"
        assert row["record_id"] == "conv-1"
        assert row["resolution"] == "server_wins"
        assert row["local_timestamp"] == T0.isoformat()
        assert "content" not in row


# ─────────── Malformed responses ───────────


class TestMalformedResponses:
    """Undecodable server answers surface as RemoteStoreError."""

    def test_row_without_id(self) -> None:
        with pytest.raises(RemoteStoreError, match="Malformed"):
            row_to_record(EntityKind.MESSAGE, {"content": "hi", "created_at": "2026-01-05"})

    def test_row_with_bad_timestamp(self) -> None:
        with pytest.raises(RemoteStoreError, match="bad timestamp"):
            row_to_record(EntityKind.PROFILE, {**PROFILE_ROW, "updated_at": "yesterday"})

    @pytest.mark.asyncio
    async def test_non_json_body(self) -> None:
        response = _response()
        response.json = AsyncMock(side_effect=json.JSONDecodeError("Expecting value", "<", 0))
        remote, _ = _store(response)

        with pytest.raises(RemoteStoreError) as exc_info:
            await remote.fetch_conversations("user-1")
        assert not isinstance(exc_info.value, RemoteUnavailableError)

    @pytest.mark.asyncio
    async def test_body_that_is_not_rows(self) -> None:
        remote, _ = _store(_response(body="ok"))

        with pytest.raises(RemoteStoreError, match="expected rows"):
            await remote.fetch_messages("conv-1")

    @pytest.mark.asyncio
    async def test_read_falls_back_to_cache(self) -> None:
        store = InMemoryReplicaStore()
        cached = RemoteRecord(
            kind=EntityKind.MESSAGE,
            id="m1",
            owner_id="user-1",
            parent_id="conv-1",
            payload={"content": "cached", "created_at": T0.isoformat()},
            updated_at=T0,
            created_at=T0,
        )
        await store.upsert(cached.to_cached(cached_at=T0))
        remote, _ = _store(_response(body=[{"conversation_id": "conv-1", "content": "x"}]))
        repository = SyncRepository(store, remote, Reachability(connected=True))

        messages = await repository.fetch_messages("conv-1")

        assert [m.remote_id for m in messages] == ["m1"]

    @pytest.mark.asyncio
    async def test_replay_is_dead_lettered(self) -> None:
        store = InMemoryReplicaStore()
        await store.upsert(
            row_to_record(EntityKind.PROFILE, PROFILE_ROW).to_cached(cached_at=T0).mark_pending(T1)
        )
        remote = HttpRemoteStore("https://project.example.co", api_key="anon-key")
        session = AsyncMock()
        session.request = MagicMock(
            side_effect=lambda *args, **kwargs: _response(body=[{"user_id": "user-1"}])
        )
        remote._session = session
        reachability = Reachability(connected=True)
        queue = PendingOperationQueue(store, reachability=reachability, max_retries=2)
        repository = SyncRepository(store, remote, reachability, queue=queue)
        await queue.enqueue(
            PendingOperation.create(
                OperationKind.UPDATE_PROFILE,
                EntityKind.PROFILE,
                "profile-1",
                "user-1",
                payload={"coaching_goals": "run a 10k"},
                base_remote_updated_at=T0,
            )
        )

        first = await repository.queue.drain()
        second = await repository.queue.drain()

        assert first.stopped_at is not None
        assert first.last_error is not None and "Malformed" in first.last_error
        assert second.dead_lettered == 1
        assert second.remaining == 0
        dead = await queue.dead_letters()
        assert len(dead) == 1 and dead[0].status == OperationStatus.DEAD_LETTER
