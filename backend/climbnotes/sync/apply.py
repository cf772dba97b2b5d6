"""Apply a batch of wire rows to a Store, and turn a Store back into rows."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from climbnotes.sync.merge import MergeSummary, merge
from climbnotes.sync.normalizer import is_tombstone_type, normalize_record_type, parse_rows
from climbnotes.sync.records import Attempt, Gym, Route, Store
from climbnotes.sync.renumber import renumber_attempts
from climbnotes.sync.tombstones import apply_tombstones
from climbnotes.utils.datetime_utils import now_iso


@dataclass
class ApplyResult:
    data: Store
    tombstone_count: int = 0
    record_count: int = 0
    skipped_rows: int = 0
    skipped_attempts: int = 0
    deleted: int = 0


def apply_sync_rows(
    current: Store,
    rows: Iterable[Mapping[str, Any]],
    now: str | None = None,
) -> ApplyResult:
    """Run one batch through merge -> tombstones -> renumbering.

    Tombstones are applied after every record of the batch has been merged,
    so a delete overrides a record inserted or updated by the same batch no
    matter where it appears in *rows*.  Rows without a record type are
    ignored entirely.
    """
    now = now or now_iso()
    records: list[Mapping[str, Any]] = []
    tombstone_rows: list[Mapping[str, Any]] = []
    for row in rows:
        record_type = row.get("record_type")
        if not isinstance(record_type, str) or not record_type.strip():
            continue
        normalized_type = normalize_record_type(record_type)
        if normalized_type is not None and is_tombstone_type(normalized_type):
            tombstone_rows.append(row)
        else:
            records.append(row)

    data = current
    summary: MergeSummary | None = None
    skipped_rows = 0
    if records:
        batch = parse_rows(records, now)
        summary = merge(data, batch)
        data = summary.data
        skipped_rows += batch.skipped_rows

    deleted = 0
    if tombstone_rows:
        batch = parse_rows(tombstone_rows, now)
        skipped_rows += batch.skipped_rows
        result = apply_tombstones(data, batch.tombstones)
        data = result.data
        deleted = result.deleted_gyms + result.deleted_routes + result.deleted_attempts

    data = data.model_copy(update={"attempts": renumber_attempts(data.attempts)})

    return ApplyResult(
        data=data,
        tombstone_count=len(tombstone_rows),
        record_count=len(records),
        skipped_rows=skipped_rows,
        skipped_attempts=summary.skipped_attempts if summary else 0,
        deleted=deleted,
    )


# ---------------------------------------------------------------------------
# Store -> wire rows
# ---------------------------------------------------------------------------


def _drop_none(row: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in row.items() if value is not None}


def build_gym_sync_row(gym: Gym) -> dict[str, Any]:
    return _drop_none(
        {
            "record_type": "gym",
            "gym_name": gym.name,
            "created_at": gym.created_at,
            "updated_at": gym.updated_at,
        }
    )


def build_route_sync_row(route: Route) -> dict[str, Any]:
    return _drop_none(
        {
            "record_type": "route",
            "gym_name": route.gym_name,
            "route_id": route.route_id,
            "rope_number": route.rope_number,
            "color": route.color,
            "set_date": route.set_date,
            "grade": route.grade,
            "created_at": route.created_at,
            "updated_at": route.updated_at,
        }
    )


def build_attempt_sync_row(attempt: Attempt) -> dict[str, Any]:
    return _drop_none(
        {
            "record_type": "attempt",
            "route_id": attempt.route_id,
            "attempt_id": attempt.attempt_id,
            "climb_date": attempt.climb_date,
            "attempt_index": str(attempt.attempt_index),
            "climb_style": attempt.climb_style.value,
            "completion_style": attempt.completion_style.value,
            "notes": attempt.notes,
            "created_at": attempt.created_at,
            "updated_at": attempt.updated_at,
        }
    )


def build_sync_rows_from_store(store: Store) -> list[dict[str, Any]]:
    """Wire rows for every entity in *store* (gyms, then routes, then attempts)."""
    return [
        *(build_gym_sync_row(gym) for gym in store.gyms),
        *(build_route_sync_row(route) for route in store.routes),
        *(build_attempt_sync_row(attempt) for attempt in store.attempts),
    ]
