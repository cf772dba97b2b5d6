"""Device-local persistence: Store document, sync meta, outbox and tombstone log."""

from climbnotes.storage.kv import FileStorage, KeyValueStorage, MemoryStorage, StorageError
from climbnotes.storage.persistence import StorePersistence
from climbnotes.storage.sync_meta import SyncMeta, SyncMetaStore
from climbnotes.storage.sync_queue import SyncQueue, get_sync_row_key
from climbnotes.storage.tombstone_log import TombstoneLog

__all__ = [
    "FileStorage",
    "KeyValueStorage",
    "MemoryStorage",
    "StorageError",
    "StorePersistence",
    "SyncMeta",
    "SyncMetaStore",
    "SyncQueue",
    "TombstoneLog",
    "get_sync_row_key",
]
