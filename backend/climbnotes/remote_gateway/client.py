"""Async client for the remote sync store's HTTP API.

Wraps ``GET /api/sync/pull`` and ``POST /api/sync/push``.  Every transport
failure and every non-2xx response surfaces as :class:`RemoteSyncError`, so
callers have one exception to handle and can leave local state untouched.

Usage::

    async with RemoteSyncClient(url, user_id) as client:
        pulled = await client.pull(cursor)
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

import httpx

from climbnotes.sync.cursor import SyncCursor

logger = logging.getLogger(__name__)


class RemoteSyncError(Exception):
    """Raised when the remote store cannot be reached or rejects a request.

    Attributes:
        status_code: HTTP status of the response, or ``None`` for transport errors.
        message: A human-readable description.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(message)


@dataclass
class PullPayload:
    rows: list[dict[str, Any]] = field(default_factory=list)
    server_time: str | None = None


@dataclass
class PushPayload:
    applied: int = 0
    skipped: int = 0
    conflicts: list[dict[str, Any]] = field(default_factory=list)
    server_time: str | None = None


class RemoteSyncClient:
    """Pull/push client bound to one user.

    Args:
        base_url: Base URL of the sync server (trailing slash is stripped).
        user_id: Identity sent in the ``X-User-Id`` header.
        timeout: Request timeout in seconds.
        client: Optional pre-built ``httpx.AsyncClient`` (e.g. with an ASGI
            transport); the instance owns and closes it either way.
    """

    def __init__(
        self,
        base_url: str,
        user_id: str,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url: str = base_url.rstrip("/")
        self._user_id: str = user_id
        self._client: httpx.AsyncClient = client or httpx.AsyncClient(timeout=timeout)

    @property
    def user_id(self) -> str:
        return self._user_id

    # ------------------------------------------------------------------
    # Sync operations
    # ------------------------------------------------------------------

    async def pull(self, cursor: SyncCursor | None = None) -> PullPayload:
        """Fetch rows changed at or after *cursor* (everything when ``None``)."""
        params: dict[str, str | int] = {}
        if cursor is not None:
            params["lastSyncAtMs"] = cursor.last_sync_at_ms
            if cursor.last_sync_key:
                params["lastSyncKey"] = cursor.last_sync_key

        data = await self._send("GET", "/api/sync/pull", params=params)
        rows = data.get("rows")
        if not isinstance(rows, list):
            raise RemoteSyncError("Malformed pull response: 'rows' is not a list")
        return PullPayload(
            rows=[row for row in rows if isinstance(row, dict)],
            server_time=data.get("serverTime"),
        )

    async def push(self, rows: Iterable[Mapping[str, Any]]) -> PushPayload:
        """Send *rows* to the remote store and return its verdict."""
        body = {"rows": [dict(row) for row in rows]}
        data = await self._send("POST", "/api/sync/push", json=body)
        return PushPayload(
            applied=int(data.get("applied", 0)),
            skipped=int(data.get("skipped", 0)),
            conflicts=list(data.get("conflicts") or []),
            server_time=data.get("serverTime"),
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _send(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._client.request(
                method,
                f"{self._url}{path}",
                headers={"X-User-Id": self._user_id},
                **kwargs,
            )
        except httpx.HTTPError as exc:
            logger.warning("Sync request %s %s failed: %s", method, path, exc)
            raise RemoteSyncError(f"Sync request failed: {exc}") from exc

        if not response.is_success:
            logger.warning("Sync request %s %s returned HTTP %d", method, path, response.status_code)
            raise RemoteSyncError(
                f"Sync request failed with HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise RemoteSyncError("Sync response is not valid JSON", response.status_code) from exc
        if not isinstance(data, dict):
            raise RemoteSyncError("Sync response is not a JSON object", response.status_code)
        return data

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> RemoteSyncClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()
