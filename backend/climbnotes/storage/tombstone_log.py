"""Locally issued delete markers awaiting push."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from climbnotes.constants import IDENTITY_FIELDS, TOMBSTONE_TYPES
from climbnotes.storage.row_log import RowLog
from climbnotes.sync.normalizer import normalize_row

TOMBSTONES_PREFIX = "climbingNotesTombstones"


class TombstoneLog(RowLog):
    """Per-user tombstones, one per deleted entity.

    Only the record type, the identity field and ``updated_at`` are kept.
    """

    prefix = TOMBSTONES_PREFIX

    def normalize(self, row: Mapping[str, Any]) -> dict[str, Any] | None:
        normalized = normalize_row(row)
        if normalized is None or normalized["record_type"] not in TOMBSTONE_TYPES:
            return None
        identity_field, _ = IDENTITY_FIELDS[normalized["record_type"]]
        if identity_field not in normalized:
            return None
        tombstone = {
            "record_type": normalized["record_type"],
            identity_field: normalized[identity_field],
        }
        if "updated_at" in normalized:
            tombstone["updated_at"] = normalized["updated_at"]
        return tombstone

    def read_tombstones(self, user_key: str) -> list[dict[str, Any]]:
        return self.read(user_key)

    def add_tombstones(self, user_key: str, rows: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
        return self.add(user_key, rows)

    def remove_tombstones(self, user_key: str, keys: Iterable[str]) -> list[dict[str, Any]]:
        return self.remove(user_key, keys)

    def clear_tombstones(self, user_key: str) -> None:
        self.clear(user_key)
