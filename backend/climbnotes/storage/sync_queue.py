"""Outbox of local changes awaiting push, one pending row per sync key."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from climbnotes.constants import RecordType
from climbnotes.storage.row_log import RowLog
from climbnotes.sync.normalizer import build_sync_key, normalize_row

SYNC_QUEUE_PREFIX = "climbingNotesSyncQueue"

_QUEUEABLE_TYPES = frozenset({RecordType.GYM, RecordType.ROUTE, RecordType.ATTEMPT})


def get_sync_row_key(row: Mapping[str, Any]) -> str | None:
    """Queue key for an entity row; tombstone rows have none here."""
    normalized = normalize_row(row)
    if normalized is None or normalized["record_type"] not in _QUEUEABLE_TYPES:
        return None
    return build_sync_key(normalized)


class SyncQueue(RowLog):
    """Per-user outbox.

    Adding a row for a key that is already queued replaces the pending row:
    on a single device the latest local write is the one to push.
    """

    prefix = SYNC_QUEUE_PREFIX

    def normalize(self, row: Mapping[str, Any]) -> dict[str, Any] | None:
        normalized = normalize_row(row)
        if normalized is None or normalized["record_type"] not in _QUEUEABLE_TYPES:
            return None
        if build_sync_key(normalized) is None:
            return None
        return normalized

    def read_sync_queue(self, user_key: str) -> list[dict[str, Any]]:
        return self.read(user_key)

    def add_sync_rows(self, user_key: str, rows: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
        return self.add(user_key, rows)

    def remove_sync_rows(self, user_key: str, keys: Iterable[str]) -> list[dict[str, Any]]:
        return self.remove(user_key, keys)

    def clear_sync_queue(self, user_key: str) -> None:
        self.clear(user_key)
