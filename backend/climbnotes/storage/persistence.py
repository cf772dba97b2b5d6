"""Store persistence with a primary location and a degraded fallback.

Writes go to the primary storage and are mirrored to the fallback.  When the
primary cannot be written, the fallback alone is used.  Reads prefer the
primary; a missing or unreadable primary document falls back to the copy in
the fallback storage (which is then migrated to the primary), and finally to
an empty Store.
"""

from __future__ import annotations

import logging

from pydantic import ValidationError

from climbnotes.storage.kv import KeyValueStorage, StorageError, read_json, write_json
from climbnotes.sync.records import Store

logger = logging.getLogger(__name__)

STORE_KEY = "climbingNotesData"


class StorePersistence:
    """Read and save the single Store document.

    Args:
        primary: Main storage location.
        fallback: Optional degraded location (also holds documents written
            by older clients that only had a single location).
    """

    def __init__(self, primary: KeyValueStorage, fallback: KeyValueStorage | None = None) -> None:
        self._primary = primary
        self._fallback = fallback

    def save_data(self, store: Store) -> None:
        """Persist *store*.

        Raises:
            StorageError: If neither the primary nor the fallback accepted it.
        """
        document = store.to_document()
        try:
            write_json(self._primary, STORE_KEY, document)
        except OSError:
            logger.exception("Failed to save data to primary storage")
            if self._fallback is None:
                raise StorageError("Local data could not be saved") from None
            try:
                write_json(self._fallback, STORE_KEY, document)
            except OSError as exc:
                logger.exception("Failed to save fallback data")
                raise StorageError("Local data could not be saved") from exc
            return

        if self._fallback is not None:
            try:
                write_json(self._fallback, STORE_KEY, document)
            except OSError:
                logger.warning("Failed to mirror data to fallback storage", exc_info=True)

    def read_data(self) -> Store:
        """Load the Store, never raising for missing or damaged documents."""
        store = _load(self._primary, "primary")
        if store is not None:
            return store

        if self._fallback is not None:
            legacy = _load(self._fallback, "fallback")
            if legacy is not None:
                try:
                    write_json(self._primary, STORE_KEY, legacy.to_document())
                    logger.info("Migrated local data from fallback storage")
                except OSError:
                    logger.warning("Failed to migrate fallback data to primary storage", exc_info=True)
                return legacy

        return Store.empty()


def _load(storage: KeyValueStorage, label: str) -> Store | None:
    document = read_json(storage, STORE_KEY)
    if not isinstance(document, dict) or not isinstance(document.get("gyms"), list):
        return None
    try:
        return Store.from_document(document)
    except ValidationError:
        logger.warning("Ignoring invalid data document in %s storage", label)
        return None
