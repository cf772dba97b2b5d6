"""Offline-first sync between the local replica and the remote sync store.

Sync strategy (Push before Pull):
1. **Push** -- Queued entity rows and logged tombstones are sent in one batch.
   On success their keys leave the outbox and the tombstone log.  Rows the
   server rejects as conflicts are dropped too; the server's newer version
   arrives with the pull.
2. **Pull** -- Rows changed since the stored cursor are fetched and run
   through merge, tombstone propagation and attempt renumbering.  The result
   is persisted first; only then is the cursor advanced.

A failed push raises before anything local changes.  A failed pull or save
leaves the previous Store and cursor in place, so the next cycle retries the
same window.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from climbnotes.config import Settings, get_settings
from climbnotes.remote_gateway.client import RemoteSyncClient
from climbnotes.services.local_edits import LocalEdit
from climbnotes.storage.kv import FileStorage
from climbnotes.storage.persistence import StorePersistence
from climbnotes.storage.sync_meta import SyncMeta, SyncMetaStore
from climbnotes.storage.sync_queue import SyncQueue
from climbnotes.storage.tombstone_log import TombstoneLog
from climbnotes.sync.apply import apply_sync_rows
from climbnotes.sync.cursor import SyncCursor, get_max_cursor
from climbnotes.sync.normalizer import build_sync_key
from climbnotes.sync.records import Store
from climbnotes.utils.datetime_utils import datetime_to_ms, ms_to_iso

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    """Summary of a synchronisation run."""

    pushed: int = 0
    conflicts: int = 0
    pulled: int = 0
    tombstones_applied: int = 0
    records_applied: int = 0
    records_deleted: int = 0
    skipped_rows: int = 0
    cursor: SyncCursor | None = None
    synced_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class SyncService:
    """Push/pull cycle for one device.

    Args:
        gateway: Client for the remote sync store.
        persistence: Local Store persistence (primary plus fallback).
        queue: Outbox of entity rows awaiting push.
        tombstone_log: Delete markers awaiting push.
        meta_store: Per-user cursor storage.
    """

    def __init__(
        self,
        gateway: RemoteSyncClient,
        persistence: StorePersistence,
        queue: SyncQueue,
        tombstone_log: TombstoneLog,
        meta_store: SyncMetaStore,
    ) -> None:
        self._gateway = gateway
        self._persistence = persistence
        self._queue = queue
        self._tombstone_log = tombstone_log
        self._meta_store = meta_store
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def sync(self, user_key: str | None = None) -> SyncResult:
        """Run one push/pull cycle for *user_key* (the gateway's user by default).

        Raises:
            RemoteSyncError: If the remote store cannot be reached.
            StorageError: If the merged Store cannot be persisted anywhere.
        """
        user_key = user_key or self._gateway.user_id
        async with self._locks[user_key]:
            result = SyncResult()

            # Step 1: Push queued rows and tombstones
            await self._push(user_key, result)

            # Step 2: Pull, apply and persist; then advance the cursor
            await self._pull(user_key, result)

            logger.info(
                "Sync completed for %s: pushed=%d, conflicts=%d, pulled=%d, "
                "records=%d, tombstones=%d, deleted=%d, skipped=%d",
                user_key,
                result.pushed,
                result.conflicts,
                result.pulled,
                result.records_applied,
                result.tombstones_applied,
                result.records_deleted,
                result.skipped_rows,
            )
            return result

    async def apply_local_edit(
        self,
        user_key: str,
        operation: Callable[[Store], LocalEdit],
    ) -> LocalEdit:
        """Run *operation* on the current Store, persist it and queue its rows.

        Serialized with :meth:`sync` for the same user so an edit never lands
        between a pull and the save of its result.
        """
        async with self._locks[user_key]:
            edit = operation(self._persistence.read_data())
            if not edit.rows and not edit.tombstones:
                return edit

            self._persistence.save_data(edit.data)
            if edit.rows:
                self._queue.add_sync_rows(user_key, edit.rows)
                # A re-created entity must not be deleted again by a stale marker
                self._tombstone_log.remove_tombstones(user_key, edit.row_keys)
            if edit.tombstones:
                self._tombstone_log.add_tombstones(user_key, edit.tombstones)
                self._queue.remove_sync_rows(user_key, edit.tombstone_keys)
            return edit

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _push(self, user_key: str, result: SyncResult) -> None:
        queued = self._queue.read_sync_queue(user_key)
        tombstones = self._tombstone_log.read_tombstones(user_key)
        if not queued and not tombstones:
            return

        # Tombstones go last so a delete overrides an upsert in the same batch
        response = await self._gateway.push([*queued, *tombstones])
        result.pushed = len(queued) + len(tombstones)
        result.conflicts = len(response.conflicts)
        if response.conflicts:
            logger.info(
                "Push for %s: %d rows superseded on the server", user_key, len(response.conflicts)
            )

        self._queue.remove_sync_rows(user_key, _keys(queued))
        self._tombstone_log.remove_tombstones(user_key, _keys(tombstones))

    async def _pull(self, user_key: str, result: SyncResult) -> None:
        meta = self._meta_store.read(user_key)
        pulled = await self._gateway.pull(meta.cursor)
        result.pulled = len(pulled.rows)

        current = self._persistence.read_data()
        applied = apply_sync_rows(current, pulled.rows)
        self._persistence.save_data(applied.data)

        result.records_applied = applied.record_count
        result.tombstones_applied = applied.tombstone_count
        result.records_deleted = applied.deleted
        result.skipped_rows = applied.skipped_rows

        cursor = get_max_cursor(pulled.rows) or meta.cursor
        result.cursor = cursor
        new_meta = SyncMeta(
            last_sync_at_ms=cursor.last_sync_at_ms if cursor else None,
            last_sync_key=cursor.last_sync_key if cursor else None,
            last_synced_at=ms_to_iso(datetime_to_ms(result.synced_at)),
        )
        try:
            self._meta_store.write(user_key, new_meta)
        except OSError:
            # Next pull repeats this window
            logger.warning("Failed to store sync cursor for %s", user_key, exc_info=True)

        logger.debug("Pull for %s: cursor %s -> %s", user_key, meta.cursor, cursor)


def _keys(rows: list[dict]) -> list[str]:
    return [key for key in map(build_sync_key, rows) if key]


def create_sync_service(settings: Settings | None = None) -> SyncService:
    """Wire a :class:`SyncService` for this device from application settings.

    Local state lives under ``DATA_DIR``; when ``FALLBACK_DATA_DIR`` is set the
    Store document is mirrored there and read back from it if the primary copy
    is lost.  The caller owns the returned service's gateway and should close it.
    """
    settings = settings or get_settings()
    if not settings.SYNC_USER_ID:
        raise ValueError("SYNC_USER_ID must be configured to sync")

    primary = FileStorage(settings.DATA_DIR)
    fallback = FileStorage(settings.FALLBACK_DATA_DIR) if settings.FALLBACK_DATA_DIR else None
    gateway = RemoteSyncClient(
        base_url=settings.SYNC_API_URL,
        user_id=settings.SYNC_USER_ID,
        timeout=settings.SYNC_TIMEOUT_SECONDS,
    )
    return SyncService(
        gateway=gateway,
        persistence=StorePersistence(primary, fallback),
        queue=SyncQueue(primary),
        tombstone_log=TombstoneLog(primary),
        meta_store=SyncMetaStore(primary),
    )
