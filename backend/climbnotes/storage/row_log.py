"""Durable per-user collections of wire rows, deduplicated by sync key.

Shared by the outbox (:class:`~climbnotes.storage.sync_queue.SyncQueue`) and
the tombstone log (:class:`~climbnotes.storage.tombstone_log.TombstoneLog`).
Later rows replace earlier ones with the same key; insertion order of the
first occurrence is kept.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from typing import Any

from climbnotes.storage.kv import KeyValueStorage, read_json, write_json
from climbnotes.sync.normalizer import build_sync_key

logger = logging.getLogger(__name__)


class RowLog(ABC):
    """Base class: subclasses set ``prefix`` and implement :meth:`normalize`."""

    prefix: str = ""

    def __init__(self, storage: KeyValueStorage) -> None:
        self._storage = storage

    def _storage_key(self, user_key: str) -> str:
        return f"{self.prefix}:{user_key}"

    @abstractmethod
    def normalize(self, row: Mapping[str, Any]) -> dict[str, Any] | None:
        """Canonical form of *row* for this log, or None to drop it."""

    def read(self, user_key: str) -> list[dict[str, Any]]:
        data = read_json(self._storage, self._storage_key(user_key))
        if not isinstance(data, list):
            return []
        rows = (self.normalize(row) for row in data if isinstance(row, Mapping))
        return [row for row in rows if row is not None]

    def _write(self, user_key: str, rows: list[dict[str, Any]]) -> None:
        try:
            write_json(self._storage, self._storage_key(user_key), rows)
        except OSError:
            logger.warning("Failed to store %s for %s", self.prefix, user_key, exc_info=True)

    def add(self, user_key: str, incoming: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
        rows: dict[str, dict[str, Any]] = {}
        for row in self.read(user_key):
            key = build_sync_key(row)
            if key:
                rows[key] = row
        for row in incoming:
            normalized = self.normalize(row)
            if normalized is None:
                continue
            key = build_sync_key(normalized)
            if key:
                rows[key] = normalized
        result = list(rows.values())
        self._write(user_key, result)
        return result

    def remove(self, user_key: str, keys: Iterable[str]) -> list[dict[str, Any]]:
        key_set = set(keys)
        if not key_set:
            return self.read(user_key)
        result = [row for row in self.read(user_key) if build_sync_key(row) not in key_set]
        self._write(user_key, result)
        return result

    def clear(self, user_key: str) -> None:
        try:
            self._storage.remove_item(self._storage_key(user_key))
        except OSError:
            logger.warning("Failed to clear %s for %s", self.prefix, user_key, exc_info=True)
