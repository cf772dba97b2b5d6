"""Attempt-index repair.

Within one ``(routeId, climbDate)`` group the attempt indices must be unique
and >= 1.  Groups that already satisfy this are left exactly as they are, even
when their numbering has gaps, so user-visible ordering never churns.
"""

from __future__ import annotations

from collections.abc import Iterable

from climbnotes.sync.records import Attempt
from climbnotes.utils.datetime_utils import parse_timestamp_ms


def _group_is_valid(group: list[Attempt]) -> bool:
    indices = [attempt.attempt_index for attempt in group]
    return all(index >= 1 for index in indices) and len(set(indices)) == len(indices)


def _creation_order(attempt: Attempt) -> tuple:
    created_ms = parse_timestamp_ms(attempt.created_at)
    return (created_ms is None, created_ms or 0, attempt.created_at, attempt.attempt_id)


def renumber_attempts(attempts: Iterable[Attempt]) -> list[Attempt]:
    """Return *attempts* with broken groups renumbered ``1..N``.

    Broken groups are ordered by ``createdAt`` then ``attemptId``.  The
    result keeps the input order, and attempts of valid groups are the same
    objects that were passed in.
    """
    attempts = list(attempts)
    groups: dict[tuple[str, str], list[Attempt]] = {}
    for attempt in attempts:
        groups.setdefault((attempt.route_id, attempt.climb_date), []).append(attempt)

    replacements: dict[int, Attempt] = {}
    for group in groups.values():
        if _group_is_valid(group):
            continue
        for index, attempt in enumerate(sorted(group, key=_creation_order), start=1):
            if attempt.attempt_index != index:
                replacements[id(attempt)] = attempt.model_copy(update={"attempt_index": index})

    if not replacements:
        return attempts
    return [replacements.get(id(attempt), attempt) for attempt in attempts]


def next_attempt_index(attempts: Iterable[Attempt], route_id: str, climb_date: str) -> int:
    """Index for a new attempt appended to ``(route_id, climb_date)``."""
    indices = [
        attempt.attempt_index
        for attempt in attempts
        if attempt.route_id == route_id and attempt.climb_date == climb_date
    ]
    return max(indices, default=0) + 1
