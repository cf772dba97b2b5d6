"""Authoritative sync store: the server side of pull/push.

Push strategy (per row, keyed by ``(user_id, sync_key)``):

1. Row rejected by the normalizer or without a sync key -> skipped.
2. Content identical to the stored row -> skipped.
3. Client timestamp (``updated_at``, else ``created_at``, else server now)
   older than the stored client timestamp -> CONFLICT (server keeps its row).
4. Equal client timestamps -> deletes win ties:
   - tombstone over a live row -> applied
   - live row over a tombstone -> CONFLICT
   - same kind -> skipped
5. Otherwise the row is stored and stamped with the server time, keeping the
   first ``created_at`` ever seen for the key.

Pull returns every row of the user written at or after the cursor timestamp,
ordered by ``(updated_at_ms, sync_key)``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from climbnotes.constants import SYNC_ROW_FIELDS
from climbnotes.models import SyncRowRecord
from climbnotes.sync.normalizer import build_sync_key, is_tombstone_type, normalize_row
from climbnotes.utils.datetime_utils import ms_to_iso, now_ms, parse_timestamp_ms

logger = logging.getLogger(__name__)

# Fields that make up a row's content; timestamps are not part of it.
_CONTENT_FIELDS: tuple[str, ...] = tuple(
    name for name in SYNC_ROW_FIELDS if name not in ("created_at", "updated_at")
)


@dataclass
class PushResult:
    applied: int = 0
    skipped: int = 0
    conflicts: list[dict[str, str]] = field(default_factory=list)
    server_time: str = ""


@dataclass
class PullResult:
    rows: list[dict[str, Any]] = field(default_factory=list)
    server_time: str = ""


def rows_equal(a: Mapping[str, Any], b: Mapping[str, Any]) -> bool:
    """Whether two normalized rows carry the same content, ignoring timestamps."""
    return all(a.get(name) == b.get(name) for name in _CONTENT_FIELDS)


def record_to_row(record: SyncRowRecord) -> dict[str, Any]:
    """Wire form of a stored row (``None`` fields omitted)."""
    row: dict[str, Any] = {"sync_key": record.sync_key}
    for name in SYNC_ROW_FIELDS:
        value = getattr(record, name)
        if value is not None:
            row[name] = value
    row["updated_at_ms"] = record.updated_at_ms
    return row


class RemoteSyncStore:
    """Pull/push operations over the ``sync_rows`` table.

    Args:
        db: An SQLAlchemy async session (caller manages transaction boundaries).
    """

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def pull(
        self,
        user_id: str,
        last_sync_at_ms: int | None = None,
        last_sync_key: str | None = None,
    ) -> PullResult:
        """Rows for *user_id* at or after the cursor; a full snapshot without one.

        ``last_sync_key`` is accepted for symmetry with the client cursor; the
        timestamp bound is inclusive so rows sharing the cursor millisecond
        are always returned again, and re-applying them is harmless.
        """
        stmt = select(SyncRowRecord).where(SyncRowRecord.user_id == user_id)
        if last_sync_at_ms is not None:
            stmt = stmt.where(SyncRowRecord.updated_at_ms >= last_sync_at_ms)
        stmt = stmt.order_by(SyncRowRecord.updated_at_ms, SyncRowRecord.sync_key)

        result = await self._db.execute(stmt)
        rows = [record_to_row(record) for record in result.scalars().all()]
        logger.debug(
            "Pull for %s since %s (%s): %d rows", user_id, last_sync_at_ms, last_sync_key, len(rows)
        )
        return PullResult(rows=rows, server_time=ms_to_iso(now_ms()))

    async def push(self, user_id: str, rows: Iterable[Mapping[str, Any]]) -> PushResult:
        """Apply client rows with last-writer-wins and delete-wins-ties rules."""
        server_ms = now_ms()
        server_iso = ms_to_iso(server_ms)
        result = PushResult(server_time=server_iso)

        for row in rows:
            normalized = normalize_row(row)
            sync_key = build_sync_key(normalized) if normalized else None
            if normalized is None or sync_key is None:
                result.skipped += 1
                continue

            existing = await self._get(user_id, sync_key)
            if existing is not None and rows_equal(record_to_row(existing), normalized):
                result.skipped += 1
                continue

            client_ms = parse_timestamp_ms(normalized.get("updated_at") or normalized.get("created_at"))
            if client_ms is None:
                client_ms = server_ms

            outcome = _resolve(normalized["record_type"], client_ms, existing)
            if outcome == "conflict":
                result.conflicts.append({"sync_key": sync_key, "record_type": normalized["record_type"]})
                continue
            if outcome == "skip":
                result.skipped += 1
                continue

            self._store(user_id, sync_key, normalized, existing, client_ms, server_ms)
            result.applied += 1

        await self._db.flush()
        logger.info(
            "Push for %s: applied=%d, skipped=%d, conflicts=%d",
            user_id, result.applied, result.skipped, len(result.conflicts),
        )
        return result

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _get(self, user_id: str, sync_key: str) -> SyncRowRecord | None:
        stmt = select(SyncRowRecord).where(
            SyncRowRecord.user_id == user_id,
            SyncRowRecord.sync_key == sync_key,
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    def _store(
        self,
        user_id: str,
        sync_key: str,
        normalized: Mapping[str, Any],
        existing: SyncRowRecord | None,
        client_ms: int,
        server_ms: int,
    ) -> None:
        server_iso = ms_to_iso(server_ms)
        record = existing
        if record is None:
            record = SyncRowRecord(user_id=user_id, sync_key=sync_key)
            self._db.add(record)

        created_at = (existing.created_at if existing else None) or normalized.get("created_at") or server_iso
        for name in _CONTENT_FIELDS:
            setattr(record, name, normalized.get(name))
        record.created_at = created_at
        record.updated_at = server_iso
        record.updated_at_ms = server_ms
        record.client_updated_at = ms_to_iso(client_ms)
        record.client_updated_at_ms = client_ms


def _resolve(record_type: str, client_ms: int, existing: SyncRowRecord | None) -> str:
    """Decide ``apply``, ``skip`` or ``conflict`` for an incoming row."""
    if existing is None:
        return "apply"
    existing_ms = existing.client_updated_at_ms
    if existing_ms is None:
        existing_ms = parse_timestamp_ms(existing.client_updated_at)
    if existing_ms is None:
        return "apply"
    if client_ms < existing_ms:
        return "conflict"
    if client_ms == existing_ms:
        incoming_is_tombstone = is_tombstone_type(record_type)
        existing_is_tombstone = is_tombstone_type(existing.record_type)
        if existing_is_tombstone and not incoming_is_tombstone:
            return "conflict"
        if incoming_is_tombstone == existing_is_tombstone:
            return "skip"
    return "apply"
