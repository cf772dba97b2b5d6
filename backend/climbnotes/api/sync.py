"""Sync API endpoints backed by :class:`RemoteSyncStore`.

Provides:
- ``GET  /sync/pull``  -- Rows changed at or after the caller's cursor
- ``POST /sync/push``  -- Apply a batch of client rows

The caller is identified by the ``X-User-Id`` header; requests without it
are rejected with 401.  Pushes for one user are serialized by a per-user
lock so that concurrent batches cannot interleave their read-compare-write.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from climbnotes.database import get_db
from climbnotes.services.remote_store import RemoteSyncStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])


# ---------------------------------------------------------------------------
# Request / response schemas
# ---------------------------------------------------------------------------


class SyncRowPayload(BaseModel):
    """One wire row.  Every field is optional; the normalizer decides validity."""

    model_config = ConfigDict(extra="ignore")

    record_type: str | None = None
    sync_key: str | None = None
    gym_name: str | None = None
    route_id: str | None = None
    attempt_id: str | None = None
    rope_number: str | None = None
    color: str | None = None
    set_date: str | None = None
    grade: str | None = None
    climb_date: str | None = None
    attempt_index: str | int | None = None
    climb_style: str | None = None
    completion_style: str | None = None
    notes: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    updated_at_ms: float | None = None


class PushRequest(BaseModel):
    rows: list[SyncRowPayload] = Field(default_factory=list)


class SyncConflict(BaseModel):
    sync_key: str
    record_type: str


class PushResponse(BaseModel):
    """Response for the push endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    applied: int
    skipped: int
    conflicts: list[SyncConflict]
    server_time: str = Field(alias="serverTime")


class PullResponse(BaseModel):
    """Response for the pull endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    rows: list[dict[str, Any]]
    server_time: str = Field(alias="serverTime")


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


async def get_current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Resolve the calling user from the ``X-User-Id`` header."""
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    return user_id


# Serializes pushes per user within this process.
_push_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("/pull", response_model=PullResponse, response_model_by_alias=True)
async def pull_rows(
    last_sync_at_ms: int | None = Query(default=None, alias="lastSyncAtMs"),
    last_sync_key: str | None = Query(default=None, alias="lastSyncKey"),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> PullResponse:
    """Return rows written at or after ``lastSyncAtMs`` (all rows without it)."""
    result = await RemoteSyncStore(db).pull(user_id, last_sync_at_ms, last_sync_key)
    return PullResponse(rows=result.rows, server_time=result.server_time)


@router.post("/push", response_model=PushResponse, response_model_by_alias=True)
async def push_rows(
    request: PushRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> PushResponse:
    """Apply client rows; stale edits come back as conflicts."""
    rows = [row.model_dump(exclude_none=True) for row in request.rows]
    async with _push_locks[user_id]:
        result = await RemoteSyncStore(db).push(user_id, rows)
        await db.commit()

    return PushResponse(
        applied=result.applied,
        skipped=result.skipped,
        conflicts=[SyncConflict(**conflict) for conflict in result.conflicts],
        server_time=result.server_time,
    )
