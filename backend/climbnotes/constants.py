from enum import StrEnum


class RecordType(StrEnum):
    GYM = "gym"
    ROUTE = "route"
    ATTEMPT = "attempt"
    TOMBSTONE_GYM = "tombstone_gym"
    TOMBSTONE_ROUTE = "tombstone_route"
    TOMBSTONE_ATTEMPT = "tombstone_attempt"


class ClimbStyle(StrEnum):
    TOP_ROPE = "top_rope"
    LEAD = "lead"


class CompletionStyle(StrEnum):
    SEND_CLEAN = "send_clean"
    SEND_RESTED = "send_rested"
    ATTEMPT = "attempt"


TOMBSTONE_TYPES: frozenset[RecordType] = frozenset(
    {RecordType.TOMBSTONE_GYM, RecordType.TOMBSTONE_ROUTE, RecordType.TOMBSTONE_ATTEMPT}
)

# Identity field carried by each record type on the wire, and the prefix used
# when that identity becomes a sync key ("gym:<name>", "route:<id>", ...).
IDENTITY_FIELDS: dict[RecordType, tuple[str, str]] = {
    RecordType.GYM: ("gym_name", "gym"),
    RecordType.TOMBSTONE_GYM: ("gym_name", "gym"),
    RecordType.ROUTE: ("route_id", "route"),
    RecordType.TOMBSTONE_ROUTE: ("route_id", "route"),
    RecordType.ATTEMPT: ("attempt_id", "attempt"),
    RecordType.TOMBSTONE_ATTEMPT: ("attempt_id", "attempt"),
}

# Columns of the wire row, in export order.
SYNC_ROW_FIELDS: tuple[str, ...] = (
    "record_type",
    "gym_name",
    "route_id",
    "attempt_id",
    "rope_number",
    "color",
    "set_date",
    "grade",
    "climb_date",
    "attempt_index",
    "climb_style",
    "completion_style",
    "notes",
    "created_at",
    "updated_at",
)

STORE_VERSION = 1
