"""Timestamp conversion utilities.

Every timestamp that enters the sync pipeline is compared as integer epoch
milliseconds.  Strings are only produced at the boundary, in the fixed-width
UTC form ``YYYY-MM-DDTHH:MM:SS.mmmZ`` so that lexical and chronological order
agree.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
_ONE_MS = timedelta(milliseconds=1)


def datetime_to_ms(value: datetime) -> int:
    """Convert a datetime to epoch milliseconds (naive values are UTC)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return (value - _EPOCH) // _ONE_MS


def parse_timestamp_ms(value: str | None) -> int | None:
    """Parse an ISO-8601 date or datetime string to epoch milliseconds.

    Date-only strings resolve to midnight UTC.  Returns ``None`` for empty
    or unparsable input.
    """
    if not value:
        return None
    text = value.strip()
    if not text:
        return None
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return datetime_to_ms(parsed)


def ms_to_iso(ms: int | float) -> str:
    """Render epoch milliseconds as ``YYYY-MM-DDTHH:MM:SS.mmmZ``.

    Raises:
        OverflowError: If *ms* falls outside the years 1-9999.
    """
    value = _EPOCH + timedelta(milliseconds=int(ms))
    return (
        f"{value.year:04d}-{value.month:02d}-{value.day:02d}T"
        f"{value.hour:02d}:{value.minute:02d}:{value.second:02d}.{value.microsecond // 1000:03d}Z"
    )


def canonical_iso(value: str | None) -> str | None:
    """Re-render an ISO string in the canonical fixed-width form, or None."""
    ms = parse_timestamp_ms(value)
    if ms is None:
        return None
    return ms_to_iso(ms)


def now_ms() -> int:
    return datetime_to_ms(datetime.now(UTC))


def now_iso() -> str:
    return ms_to_iso(now_ms())
