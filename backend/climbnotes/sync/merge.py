"""Merge engine: reconcile an incoming batch with the current Store.

Per entity the rule is newest-wins:

1. No existing entity with the same key -> insert (``added``).
2. Incoming carries an ``updatedAt`` that is strictly newer than the existing
   one (or the existing has none) -> overwrite, keeping the existing identity
   field and the earlier ``createdAt`` (``updated``).
3. Otherwise the existing entity wins and the incoming one is discarded.

Because every decision is "compare timestamp, keep max", merging the same
batch twice is a no-op the second time and the order of independent keys does
not matter.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import TypeVar

from climbnotes.sync.normalizer import ParsedBatch
from climbnotes.sync.records import Attempt, Gym, Route, Store, SyncRecord, gym_key
from climbnotes.sync.renumber import renumber_attempts
from climbnotes.utils.datetime_utils import now_iso, parse_timestamp_ms

R = TypeVar("R", bound=SyncRecord)


@dataclass
class MergeSummary:
    """Merged Store plus per-kind counters."""

    data: Store
    added_gyms: int = 0
    updated_gyms: int = 0
    added_routes: int = 0
    updated_routes: int = 0
    added_attempts: int = 0
    updated_attempts: int = 0
    skipped_attempts: int = 0


def is_incoming_newer(incoming: SyncRecord, existing: SyncRecord) -> bool:
    """Whether *incoming* should replace *existing*.

    A record without ``updatedAt`` never wins; one with ``updatedAt`` always
    wins against a record without.  Ties keep the existing record.
    """
    incoming_ms = parse_timestamp_ms(incoming.updated_at)
    if incoming_ms is None:
        return False
    existing_ms = parse_timestamp_ms(existing.updated_at)
    if existing_ms is None:
        return True
    return incoming_ms > existing_ms


def pick_earlier_timestamp(a: str, b: str) -> str:
    a_ms = parse_timestamp_ms(a)
    b_ms = parse_timestamp_ms(b)
    if a_ms is None or b_ms is None:
        return a if a <= b else b
    return a if a_ms <= b_ms else b


def _merge_records(
    existing: Iterable[R],
    incoming: Iterable[R],
    key: Callable[[R], str],
    identity_field: str,
) -> tuple[list[R], int, int]:
    merged: dict[str, R] = {}
    for record in existing:
        merged[key(record)] = record

    added = 0
    updated = 0
    for record in incoming:
        record_key = key(record)
        current = merged.get(record_key)
        if current is None:
            merged[record_key] = record
            added += 1
            continue
        if is_incoming_newer(record, current):
            merged[record_key] = record.model_copy(
                update={
                    identity_field: getattr(current, identity_field),
                    "created_at": pick_earlier_timestamp(current.created_at, record.created_at),
                }
            )
            updated += 1

    return list(merged.values()), added, updated


def merge_gyms(existing: Iterable[Gym], incoming: Iterable[Gym]) -> tuple[list[Gym], int, int]:
    return _merge_records(existing, incoming, lambda gym: gym.key, "name")


def merge_routes(existing: Iterable[Route], incoming: Iterable[Route]) -> tuple[list[Route], int, int]:
    return _merge_records(existing, incoming, lambda route: route.route_id, "route_id")


def merge_attempts(
    existing: Iterable[Attempt], incoming: Iterable[Attempt]
) -> tuple[list[Attempt], int, int]:
    return _merge_records(existing, incoming, lambda attempt: attempt.attempt_id, "attempt_id")


def _with_implied_gyms(gyms: list[Gym], routes: list[Route], now: str) -> list[Gym]:
    """Append a synthetic gym for every route whose gym is not in *gyms*."""
    result = list(gyms)
    known = {gym.key for gym in gyms}
    for route in routes:
        key = gym_key(route.gym_name)
        if key not in known:
            result.append(Gym(name=route.gym_name, created_at=route.created_at or now))
            known.add(key)
    return result


def merge(current: Store, incoming: ParsedBatch) -> MergeSummary:
    """Merge *incoming* into *current* and return the new Store with counters.

    *current* is not modified.  Incoming attempts whose route is absent after
    the route merge are dropped and counted in ``skipped_attempts``.
    """
    gyms, added_gyms, updated_gyms = merge_gyms(
        current.gyms, _with_implied_gyms(incoming.gyms, incoming.routes, now_iso())
    )
    routes, added_routes, updated_routes = merge_routes(current.routes, incoming.routes)

    route_ids = {route.route_id for route in routes}
    attempts_to_merge = [attempt for attempt in incoming.attempts if attempt.route_id in route_ids]
    skipped_attempts = len(incoming.attempts) - len(attempts_to_merge)

    attempts, added_attempts, updated_attempts = merge_attempts(current.attempts, attempts_to_merge)

    return MergeSummary(
        data=Store(
            version=current.version,
            gyms=gyms,
            routes=routes,
            attempts=renumber_attempts(attempts),
        ),
        added_gyms=added_gyms,
        updated_gyms=updated_gyms,
        added_routes=added_routes,
        updated_routes=updated_routes,
        added_attempts=added_attempts,
        updated_attempts=updated_attempts,
        skipped_attempts=skipped_attempts,
    )
