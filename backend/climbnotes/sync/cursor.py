"""Pull cursor: the ``(timestamp, key)`` high-water mark of applied rows."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from climbnotes.sync.normalizer import get_row_sync_key, get_row_timestamp_ms


@dataclass(frozen=True, order=True)
class SyncCursor:
    """Ordered by timestamp first, then key, which gives a strict total order."""

    last_sync_at_ms: int
    last_sync_key: str

    def to_dict(self) -> dict[str, Any]:
        return {"lastSyncAtMs": self.last_sync_at_ms, "lastSyncKey": self.last_sync_key}


def get_max_cursor(rows: Iterable[Mapping[str, Any]]) -> SyncCursor | None:
    """Return the greatest ``(timestamp, key)`` pair in *rows*, or ``None``.

    Rows without both a usable timestamp and a sync key are ignored.
    """
    best: SyncCursor | None = None
    for row in rows:
        timestamp_ms = get_row_timestamp_ms(row)
        key = get_row_sync_key(row)
        if timestamp_ms is None or not key:
            continue
        candidate = SyncCursor(timestamp_ms, key)
        if best is None or candidate > best:
            best = candidate
    return best
