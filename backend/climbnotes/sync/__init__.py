"""Offline sync core: normalize, merge, propagate tombstones, repair attempt order."""

from climbnotes.sync.apply import ApplyResult, apply_sync_rows, build_sync_rows_from_store
from climbnotes.sync.cursor import SyncCursor, get_max_cursor
from climbnotes.sync.merge import MergeSummary, merge
from climbnotes.sync.normalizer import (
    AttemptRow,
    GymRow,
    ParsedBatch,
    RejectedRow,
    RouteRow,
    TombstoneRow,
    build_sync_key,
    normalize_row,
    parse_row,
    parse_rows,
)
from climbnotes.sync.records import Attempt, Gym, Route, Store
from climbnotes.sync.renumber import renumber_attempts
from climbnotes.sync.tombstones import TombstoneResult, apply_tombstones

__all__ = [
    "ApplyResult",
    "Attempt",
    "AttemptRow",
    "Gym",
    "GymRow",
    "MergeSummary",
    "ParsedBatch",
    "RejectedRow",
    "Route",
    "RouteRow",
    "Store",
    "SyncCursor",
    "TombstoneResult",
    "TombstoneRow",
    "apply_sync_rows",
    "apply_tombstones",
    "build_sync_key",
    "build_sync_rows_from_store",
    "get_max_cursor",
    "merge",
    "normalize_row",
    "parse_row",
    "parse_rows",
    "renumber_attempts",
]
