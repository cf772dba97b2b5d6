"""Row normalizer: loosely-typed wire rows in, canonical rows out.

Two levels are offered:

- :func:`normalize_row` produces the canonical *wire* form of a row (a plain
  dict with trimmed, non-empty fields).  It is what the outbox and the remote
  store compare and persist.
- :func:`parse_row` goes one step further and parses the row into one of the
  entity variants (:class:`GymRow`, :class:`RouteRow`, :class:`AttemptRow`,
  :class:`TombstoneRow`) or an explicit :class:`RejectedRow`.

Neither function raises for bad input; rejection is a value.
"""

from __future__ import annotations

import logging
import math
import re
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from climbnotes.constants import (
    IDENTITY_FIELDS,
    TOMBSTONE_TYPES,
    ClimbStyle,
    CompletionStyle,
    RecordType,
)
from climbnotes.sync.records import Attempt, Gym, Route
from climbnotes.utils.datetime_utils import canonical_iso, ms_to_iso, now_iso, parse_timestamp_ms

logger = logging.getLogger(__name__)

_GRADE_RE = re.compile(r"^5\.(\d+)([abcd]|[+-])?$")
_BARE_GRADE_RE = re.compile(r"^\d+([abcd]|[+-])?$")
_LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")

_TEXT_FIELDS: tuple[str, ...] = (
    "sync_key",
    "gym_name",
    "route_id",
    "attempt_id",
    "rope_number",
    "color",
    "set_date",
    "grade",
    "climb_date",
    "climb_style",
    "completion_style",
    "notes",
)

_ROUTE_PARTS: tuple[str, ...] = ("gym_name", "rope_number", "color", "set_date")


# ---------------------------------------------------------------------------
# Domain helpers
# ---------------------------------------------------------------------------


def normalize_grade(value: str) -> str:
    """Lowercase a grade and prefix bare numbers with ``5.`` (``10a`` -> ``5.10a``)."""
    trimmed = value.strip().lower()
    if not trimmed or trimmed.startswith("5."):
        return trimmed
    if _BARE_GRADE_RE.match(trimmed):
        return f"5.{trimmed}"
    return trimmed


def is_valid_grade(grade: str) -> bool:
    """Whether *grade* is a Yosemite Decimal System grade after normalization."""
    return bool(_GRADE_RE.match(normalize_grade(grade)))


def to_route_id(gym_name: str, rope_number: str, color: str, set_date: str) -> str:
    return f"{gym_name}:{rope_number}:{color}:{set_date}"


def create_id() -> str:
    return str(uuid.uuid4())


def normalize_record_type(value: Any) -> RecordType | None:
    if not isinstance(value, str):
        return None
    try:
        return RecordType(value.strip().lower())
    except ValueError:
        return None


def is_tombstone_type(record_type: str) -> bool:
    return record_type in TOMBSTONE_TYPES


def build_sync_key(row: Mapping[str, Any]) -> str | None:
    """Derive the sync key (``gym:<name>``, ``route:<id>``, ``attempt:<id>``).

    Tombstones share the key of the entity they delete.  An explicit
    ``sync_key`` field is not consulted here; see :func:`get_row_sync_key`.
    """
    record_type = normalize_record_type(row.get("record_type"))
    if record_type is None:
        return None
    identity_field, prefix = IDENTITY_FIELDS[record_type]
    identity = row.get(identity_field)
    if not identity:
        return None
    return f"{prefix}:{identity}"


def get_row_sync_key(row: Mapping[str, Any]) -> str | None:
    """Explicit ``sync_key`` when the row carries one, else the derived key."""
    explicit = row.get("sync_key")
    if explicit:
        return str(explicit)
    return build_sync_key(row)


def get_row_timestamp_ms(row: Mapping[str, Any]) -> int | None:
    """``updated_at_ms`` when numeric, else the parsed ``updated_at``."""
    value = row.get("updated_at_ms")
    if _is_number(value) and math.isfinite(value):
        return int(value)
    updated_at = row.get("updated_at")
    return parse_timestamp_ms(updated_at) if isinstance(updated_at, str) else None


# ---------------------------------------------------------------------------
# Wire-level normalization
# ---------------------------------------------------------------------------


def normalize_row(row: Mapping[str, Any]) -> dict[str, Any] | None:
    """Return the canonical wire form of *row*, or ``None`` if it is rejected."""
    normalized, reason = _normalize(row)
    if normalized is None:
        logger.debug("Rejected sync row: %s", reason)
    return normalized


def _normalize(row: Mapping[str, Any]) -> tuple[dict[str, Any] | None, str]:
    if not isinstance(row, Mapping):
        return None, "row is not a mapping"

    record_type = normalize_record_type(row.get("record_type"))
    if record_type is None:
        return None, f"unrecognized record_type {row.get('record_type')!r}"

    normalized: dict[str, Any] = {"record_type": record_type.value}

    for name in _TEXT_FIELDS:
        text = _clean_text(row.get(name))
        if text:
            normalized[name] = text

    attempt_index = _attempt_index_text(row.get("attempt_index"))
    if attempt_index:
        normalized["attempt_index"] = attempt_index

    if "grade" in normalized:
        grade = normalize_grade(normalized["grade"])
        if not _GRADE_RE.match(grade):
            return None, f"invalid grade {normalized['grade']!r}"
        normalized["grade"] = grade

    if record_type in (RecordType.ROUTE, RecordType.TOMBSTONE_ROUTE) and "route_id" not in normalized:
        if all(part in normalized for part in _ROUTE_PARTS):
            normalized["route_id"] = to_route_id(*(normalized[part] for part in _ROUTE_PARTS))

    created_at = _canonical_timestamp(row.get("created_at"))
    if created_at:
        normalized["created_at"] = created_at

    updated_at_ms = row.get("updated_at_ms")
    rendered = _render_ms(updated_at_ms)
    if rendered:
        normalized["updated_at_ms"] = int(updated_at_ms)
        normalized["updated_at"] = rendered
    else:
        updated_at = _canonical_timestamp(row.get("updated_at"))
        if updated_at:
            normalized["updated_at"] = updated_at

    return normalized, ""


def _clean_text(value: Any) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        value = str(value)
    return value.strip()


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def _render_ms(value: Any) -> str | None:
    """Canonical form of numeric epoch ms; None when not representable."""
    if not _is_number(value) or not math.isfinite(value):
        return None
    try:
        return ms_to_iso(value)
    except (OverflowError, ValueError):
        return None


def _canonical_timestamp(value: Any) -> str | None:
    try:
        return canonical_iso(_clean_text(value))
    except (OverflowError, ValueError):
        return None


def _attempt_index_text(value: Any) -> str:
    """Text form of an attempt index; integral floats lose their ``.0``."""
    if value is None or isinstance(value, bool):
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return _clean_text(value)


def _parse_attempt_index(text: str | None) -> int:
    """Leading integer of *text*; anything unusable becomes 0 (repaired later)."""
    if not text:
        return 0
    match = _LEADING_INT_RE.match(text)
    if not match:
        return 0
    value = int(match.group(1))
    return value if value > 0 else 0


# ---------------------------------------------------------------------------
# Entity parsing (tagged union)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GymRow:
    gym: Gym


@dataclass(frozen=True)
class RouteRow:
    route: Route


@dataclass(frozen=True)
class AttemptRow:
    attempt: Attempt


@dataclass(frozen=True)
class TombstoneRow:
    """A delete intent: record type, target identity and optional timestamp."""

    record_type: RecordType
    target: str
    updated_at_ms: int | None = None

    @property
    def sync_key(self) -> str:
        _, prefix = IDENTITY_FIELDS[self.record_type]
        return f"{prefix}:{self.target}"

    def to_sync_row(self) -> dict[str, Any]:
        identity_field, _ = IDENTITY_FIELDS[self.record_type]
        row: dict[str, Any] = {"record_type": self.record_type.value, identity_field: self.target}
        if self.updated_at_ms is not None:
            row["updated_at"] = ms_to_iso(self.updated_at_ms)
        return row


@dataclass(frozen=True)
class RejectedRow:
    reason: str


ParsedRow = GymRow | RouteRow | AttemptRow | TombstoneRow | RejectedRow


@dataclass
class ParsedBatch:
    """Rows of one incoming batch, grouped by kind."""

    gyms: list[Gym] = field(default_factory=list)
    routes: list[Route] = field(default_factory=list)
    attempts: list[Attempt] = field(default_factory=list)
    tombstones: list[TombstoneRow] = field(default_factory=list)
    skipped_rows: int = 0


def parse_row(row: Mapping[str, Any], now: str | None = None) -> ParsedRow:
    """Parse one wire row into its entity variant.

    Args:
        row: Loosely-typed row (CSV dict, HTTP payload, in-memory dict).
        now: Fallback ``created_at`` for rows that carry none.
    """
    normalized, reason = _normalize(row)
    if normalized is None:
        return RejectedRow(reason)

    record_type = RecordType(normalized["record_type"])
    created_at = normalized.get("created_at") or now or now_iso()
    updated_at = normalized.get("updated_at")

    if record_type in TOMBSTONE_TYPES:
        identity_field, _ = IDENTITY_FIELDS[record_type]
        target = normalized.get(identity_field)
        if not target:
            return RejectedRow(f"{record_type.value} without {identity_field}")
        return TombstoneRow(record_type, target, get_row_timestamp_ms(normalized))

    if record_type is RecordType.GYM:
        name = normalized.get("gym_name")
        if not name:
            return RejectedRow("gym without gym_name")
        return GymRow(Gym(name=name, created_at=created_at, updated_at=updated_at))

    if record_type is RecordType.ROUTE:
        missing = [name for name in (*_ROUTE_PARTS, "grade") if name not in normalized]
        if missing:
            return RejectedRow(f"route missing {', '.join(missing)}")
        return RouteRow(
            Route(
                route_id=normalized["route_id"],
                gym_name=normalized["gym_name"],
                rope_number=normalized["rope_number"],
                color=normalized["color"],
                set_date=normalized["set_date"],
                grade=normalized["grade"],
                created_at=created_at,
                updated_at=updated_at,
            )
        )

    route_id = normalized.get("route_id")
    climb_date = normalized.get("climb_date")
    if not route_id or not climb_date:
        return RejectedRow("attempt missing route_id or climb_date")
    climb_style = normalized.get("climb_style", "").lower()
    completion_style = normalized.get("completion_style", "").lower()
    return AttemptRow(
        Attempt(
            attempt_id=normalized.get("attempt_id") or create_id(),
            route_id=route_id,
            climb_date=climb_date,
            attempt_index=_parse_attempt_index(normalized.get("attempt_index")),
            climb_style=ClimbStyle.LEAD if climb_style == ClimbStyle.LEAD else ClimbStyle.TOP_ROPE,
            completion_style=(
                CompletionStyle(completion_style)
                if completion_style in set(CompletionStyle)
                else CompletionStyle.ATTEMPT
            ),
            notes=normalized.get("notes", ""),
            created_at=created_at,
            updated_at=updated_at,
        )
    )


def parse_rows(rows: Iterable[Mapping[str, Any]], now: str | None = None) -> ParsedBatch:
    """Parse a batch of rows; rejected rows only bump ``skipped_rows``."""
    now = now or now_iso()
    batch = ParsedBatch()
    for row in rows:
        parsed = parse_row(row, now)
        match parsed:
            case GymRow(gym=gym):
                batch.gyms.append(gym)
            case RouteRow(route=route):
                batch.routes.append(route)
            case AttemptRow(attempt=attempt):
                batch.attempts.append(attempt)
            case TombstoneRow():
                batch.tombstones.append(parsed)
            case RejectedRow(reason=reason):
                logger.debug("Skipped row: %s", reason)
                batch.skipped_rows += 1
    return batch
