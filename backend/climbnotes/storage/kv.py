"""Key-value storage backends for device-local state.

Local state (the Store document, per-user sync meta, outbox and tombstone
log) is kept as JSON strings under string keys.  :class:`FileStorage` keeps
one file per key in a directory and replaces files atomically, so a crash
mid-write leaves the previous value intact.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any
from urllib.parse import quote

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when local state cannot be written to any storage location."""


class KeyValueStorage(ABC):
    """Minimal string key-value interface (``get_item`` / ``set_item`` / ``remove_item``).

    Implementations raise :class:`OSError` on I/O failure; callers decide how
    to degrade.
    """

    @abstractmethod
    def get_item(self, key: str) -> str | None: ...

    @abstractmethod
    def set_item(self, key: str, value: str) -> None: ...

    @abstractmethod
    def remove_item(self, key: str) -> None: ...


class MemoryStorage(KeyValueStorage):
    """In-process storage, used for tests and ephemeral sessions."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get_item(self, key: str) -> str | None:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove_item(self, key: str) -> None:
        self._data.pop(key, None)


class FileStorage(KeyValueStorage):
    """One ``<quoted key>.json`` file per key under *directory*.

    Args:
        directory: Target directory, created on first write.
    """

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self._directory / f"{quote(key, safe='')}.json"

    def get_item(self, key: str) -> str | None:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set_item(self, key: str, value: str) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self._directory, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
            os.replace(tmp_name, self._path(key))
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def remove_item(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


def read_json(storage: KeyValueStorage, key: str) -> Any:
    """Load the JSON value at *key*; ``None`` when missing, unreadable or corrupt."""
    try:
        raw = storage.get_item(key)
    except OSError:
        logger.warning("Failed to read %s from local storage", key, exc_info=True)
        return None
    if not raw:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Discarding corrupt JSON stored under %s", key)
        return None


def write_json(storage: KeyValueStorage, key: str, value: Any) -> None:
    """Serialize *value* to *key*.  Raises :class:`OSError` on I/O failure."""
    storage.set_item(key, json.dumps(value, ensure_ascii=False))
