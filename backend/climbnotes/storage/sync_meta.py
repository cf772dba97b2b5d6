"""Per-user sync metadata (the pull cursor and the last successful sync time)."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any

from climbnotes.storage.kv import KeyValueStorage, read_json, write_json
from climbnotes.sync.cursor import SyncCursor
from climbnotes.utils.datetime_utils import parse_timestamp_ms

logger = logging.getLogger(__name__)

SYNC_META_PREFIX = "climbingNotesSyncMeta:"


@dataclass
class SyncMeta:
    last_sync_at_ms: int | None = None
    last_sync_key: str | None = None
    last_synced_at: str | None = None

    @property
    def cursor(self) -> SyncCursor | None:
        if self.last_sync_at_ms is None:
            return None
        return SyncCursor(self.last_sync_at_ms, self.last_sync_key or "")

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.last_sync_at_ms is not None:
            data["lastSyncAtMs"] = self.last_sync_at_ms
        if self.last_sync_key is not None:
            data["lastSyncKey"] = self.last_sync_key
        if self.last_synced_at is not None:
            data["lastSyncedAt"] = self.last_synced_at
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncMeta:
        """Build from a stored record; a legacy ISO ``lastSyncAt`` is converted."""
        raw_ms = data.get("lastSyncAtMs")
        if isinstance(raw_ms, int | float) and not isinstance(raw_ms, bool) and math.isfinite(raw_ms):
            last_sync_at_ms: int | None = int(raw_ms)
        else:
            legacy = data.get("lastSyncAt")
            last_sync_at_ms = parse_timestamp_ms(legacy) if isinstance(legacy, str) else None
        key = data.get("lastSyncKey")
        synced_at = data.get("lastSyncedAt")
        return cls(
            last_sync_at_ms=last_sync_at_ms,
            last_sync_key=key if isinstance(key, str) else None,
            last_synced_at=synced_at if isinstance(synced_at, str) else None,
        )


class SyncMetaStore:
    def __init__(self, storage: KeyValueStorage) -> None:
        self._storage = storage

    @staticmethod
    def _key(user_key: str) -> str:
        return f"{SYNC_META_PREFIX}{user_key}"

    def read(self, user_key: str) -> SyncMeta:
        """Stored meta for *user_key*; empty when missing or corrupt."""
        data = read_json(self._storage, self._key(user_key))
        if not isinstance(data, dict):
            return SyncMeta()
        return SyncMeta.from_dict(data)

    def write(self, user_key: str, meta: SyncMeta) -> None:
        """Persist *meta*.  Raises :class:`OSError` if the storage fails."""
        write_json(self._storage, self._key(user_key), meta.to_dict())
