"""Remote store client for a PostgREST-style managed data platform."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any

import aiohttp

from coach_sync.core.conflicts import ConflictLogEntry
from coach_sync.core.entities import EntityKind
from coach_sync.errors import RemoteConflictError, RemoteStoreError, RemoteUnavailableError
from coach_sync.remote.base import RemoteRecord, RemoteStore
from coach_sync.utils.timeutils import format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)

PROFILES_TABLE = "context_profiles"
CONVERSATIONS_TABLE = "conversations"
MESSAGES_TABLE = "messages"
CONFLICT_LOG_TABLE = "sync_conflict_logs"


def row_to_record(kind: EntityKind, row: dict[str, Any]) -> RemoteRecord:
    """Convert a table row into a RemoteRecord.

    The whole row becomes the payload so callers see every column. Rows missing
    an id or carrying unparseable timestamps raise RemoteStoreError.
    """
    if not isinstance(row, dict) or row.get("id") is None:
        raise RemoteStoreError(f"Malformed {kind.value} row: {row!r}")
    try:
        created_at = parse_timestamp(row.get("created_at"))
        updated_at = parse_timestamp(row.get("updated_at")) or created_at
    except (TypeError, ValueError) as e:
        raise RemoteStoreError(f"{kind.value} row {row['id']} has a bad timestamp: {e}") from e
    if updated_at is None:
        raise RemoteStoreError(f"{kind.value} row {row['id']} has no timestamps")
    parent_id = row.get("conversation_id") if kind == EntityKind.MESSAGE else None
    return RemoteRecord(
        kind=kind,
        id=str(row["id"]),
        owner_id=str(row.get("user_id", "")),
        payload=dict(row),
        updated_at=updated_at,
        created_at=created_at,
        parent_id=str(parent_id) if parent_id is not None else None,
    )


class HttpRemoteStore(RemoteStore):
    """
    aiohttp client speaking PostgREST conventions.

    Usage:
        async with HttpRemoteStore("https://project.example.co", api_key="anon") as remote:
            profile = await remote.fetch_profile(user_id)

    Network errors, timeouts and 5xx responses raise RemoteUnavailableError;
    other error statuses raise RemoteStoreError with ``status_code`` set.
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        access_token: str | None = None,
        timeout: float = 10.0,
    ) -> None:
        """
        Initialize the client.

        Args:
            base_url: Project URL (``/rest/v1`` is appended)
            api_key: Public API key sent as ``apikey``
            access_token: User JWT; defaults to the API key
            timeout: Total per-request timeout in seconds
        """
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._access_token = access_token
        self.timeout = timeout
        self._client_timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: aiohttp.ClientSession | None = None

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def is_connected(self) -> bool:
        return self._session is not None

    def set_access_token(self, token: str | None) -> None:
        """Swap the bearer token after sign-in or refresh."""
        self._access_token = token

    async def connect(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._client_timeout)

    async def close(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> HttpRemoteStore:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.close()

    def _get_headers(self, prefer: str = "return=representation") -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Prefer": prefer,
        }
        if self._api_key:
            headers["apikey"] = self._api_key
        token = self._access_token or self._api_key
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _request(
        self,
        method: str,
        table: str,
        *,
        params: dict[str, str] | None = None,
        json_data: dict[str, Any] | None = None,
        prefer: str = "return=representation",
    ) -> list[dict[str, Any]]:
        """Issue one PostgREST request and return the affected rows."""
        if not self._session:
            await self.connect()

        assert self._session is not None

        url = f"{self._base_url}/rest/v1/{table}"

        try:
            async with self._session.request(
                method,
                url,
                params=params,
                json=json_data,
                headers=self._get_headers(prefer),
            ) as response:
                if response.status >= 500:
                    text = await response.text()
                    raise RemoteUnavailableError(
                        f"Server error on {table}: {text}",
                        status_code=response.status,
                    )
                if response.status >= 400:
                    text = await response.text()
                    raise RemoteStoreError(
                        f"Request to {table} rejected: {text}",
                        status_code=response.status,
                    )
                if response.status == 204:
                    return []
                try:
                    body = await response.json()
                except (aiohttp.ContentTypeError, ValueError) as e:
                    raise RemoteStoreError(
                        f"Malformed response from {table}: {e}",
                        status_code=response.status,
                    ) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RemoteUnavailableError(f"Failed to reach {table}: {e}") from e

        if body is None:
            return []
        if isinstance(body, dict):
            return [body]
        if not isinstance(body, list) or not all(isinstance(row, dict) for row in body):
            raise RemoteStoreError(f"Malformed response from {table}: expected rows")
        return body

    # ========== Profiles ==========

    async def fetch_profile(self, owner_id: str) -> RemoteRecord | None:
        rows = await self._request(
            "GET",
            PROFILES_TABLE,
            params={"user_id": f"eq.{owner_id}", "select": "*", "limit": "1"},
        )
        if not rows:
            return None
        return row_to_record(EntityKind.PROFILE, rows[0])

    async def update_profile(
        self,
        record: RemoteRecord,
        *,
        expected_updated_at: datetime | None = None,
    ) -> RemoteRecord:
        params = {"id": f"eq.{record.id}"}
        if expected_updated_at is not None:
            params["updated_at"] = f"eq.{format_timestamp(expected_updated_at)}"

        body = self._profile_body(record)
        rows = await self._request("PATCH", PROFILES_TABLE, params=params, json_data=body)
        if rows:
            return row_to_record(EntityKind.PROFILE, rows[0])

        # Zero rows matched: either the version moved or the row is gone.
        current = await self.fetch_profile(record.owner_id)
        if current is not None and current.id != record.id:
            current = None
        if expected_updated_at is None and current is None:
            return await self.create_profile(record)
        raise RemoteConflictError(
            f"profile {record.id} changed remotely"
            if current is not None
            else f"profile {record.id} no longer exists",
            current=current,
        )

    async def create_profile(self, record: RemoteRecord) -> RemoteRecord:
        body = {**self._profile_body(record), "id": record.id, "user_id": record.owner_id}
        rows = await self._request(
            "POST",
            PROFILES_TABLE,
            params={"on_conflict": "user_id"},
            json_data=body,
            prefer="return=representation,resolution=merge-duplicates",
        )
        if not rows:
            raise RemoteStoreError(f"profile {record.id} was not returned after insert")
        return row_to_record(EntityKind.PROFILE, rows[0])

    @staticmethod
    def _profile_body(record: RemoteRecord) -> dict[str, Any]:
        body = {
            k: v for k, v in record.payload.items() if k not in ("id", "user_id", "created_at")
        }
        body["updated_at"] = format_timestamp(record.updated_at)
        return body

    # ========== Conversations & messages ==========

    async def fetch_conversations(self, owner_id: str) -> list[RemoteRecord]:
        rows = await self._request(
            "GET",
            CONVERSATIONS_TABLE,
            params={
                "user_id": f"eq.{owner_id}",
                "select": "*",
                "order": "last_message_at.desc.nullslast",
            },
        )
        return [row_to_record(EntityKind.CONVERSATION, row) for row in rows]

    async def fetch_messages(self, conversation_id: str) -> list[RemoteRecord]:
        rows = await self._request(
            "GET",
            MESSAGES_TABLE,
            params={
                "conversation_id": f"eq.{conversation_id}",
                "select": "*",
                "order": "created_at.asc",
            },
        )
        return [row_to_record(EntityKind.MESSAGE, row) for row in rows]

    async def delete_conversation(self, conversation_id: str) -> bool:
        rows = await self._request(
            "DELETE",
            CONVERSATIONS_TABLE,
            params={"id": f"eq.{conversation_id}"},
        )
        return bool(rows)

    async def delete_all_conversations(self, owner_id: str) -> int:
        rows = await self._request(
            "DELETE",
            CONVERSATIONS_TABLE,
            params={"user_id": f"eq.{owner_id}"},
        )
        return len(rows)

    async def insert_conflict_log(self, entry: ConflictLogEntry) -> None:
        await self._request("POST", CONFLICT_LOG_TABLE, json_data=entry.to_remote_row())
        logger.debug(
            "Uploaded conflict log",
            extra={"entity_type": entry.entity_type, "entity_id": entry.entity_id},
        )
