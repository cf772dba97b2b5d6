"""User-initiated edits to the local replica.

Each operation takes the current :class:`Store` and returns a
:class:`LocalEdit`: the new Store, the entity rows to queue for push, and the
tombstone rows describing what was deleted.  Nothing is persisted here; see
:meth:`SyncService.apply_local_edit`.

Deletes cascade the same way remote tombstones do: a gym takes its routes and
their attempts with it, a route takes its attempts.  A tombstone is emitted
for every removed entity.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from climbnotes.constants import ClimbStyle, CompletionStyle, RecordType
from climbnotes.sync.apply import build_attempt_sync_row, build_gym_sync_row, build_route_sync_row
from climbnotes.sync.normalizer import (
    TombstoneRow,
    build_sync_key,
    create_id,
    is_valid_grade,
    normalize_grade,
    to_route_id,
)
from climbnotes.sync.records import Attempt, Gym, Route, Store, gym_key
from climbnotes.sync.renumber import next_attempt_index
from climbnotes.sync.tombstones import apply_tombstones
from climbnotes.utils.datetime_utils import now_iso, parse_timestamp_ms


@dataclass
class LocalEdit:
    data: Store
    rows: list[dict[str, Any]] = field(default_factory=list)
    tombstones: list[dict[str, Any]] = field(default_factory=list)

    @property
    def row_keys(self) -> list[str]:
        return [key for key in map(build_sync_key, self.rows) if key]

    @property
    def tombstone_keys(self) -> list[str]:
        return [key for key in map(build_sync_key, self.tombstones) if key]


def _required(value: str, name: str) -> str:
    text = (value or "").strip()
    if not text:
        raise ValueError(f"{name} is required")
    return text


def _find_gym(store: Store, name: str) -> Gym | None:
    key = gym_key(name)
    return next((gym for gym in store.gyms if gym.key == key), None)


# ---------------------------------------------------------------------------
# Additions
# ---------------------------------------------------------------------------


def add_gym(store: Store, name: str, now: str | None = None) -> LocalEdit:
    """Add a gym; adding an existing name (any case) changes nothing."""
    name = _required(name, "gym name")
    if _find_gym(store, name) is not None:
        return LocalEdit(data=store)

    now = now or now_iso()
    gym = Gym(name=name, created_at=now, updated_at=now)
    return LocalEdit(
        data=store.model_copy(update={"gyms": [*store.gyms, gym]}),
        rows=[build_gym_sync_row(gym)],
    )


def add_route(
    store: Store,
    gym_name: str,
    rope_number: str,
    color: str,
    set_date: str,
    grade: str,
    now: str | None = None,
) -> LocalEdit:
    """Add a route, or regrade it when the same route already exists.

    The gym is created on the fly when it is not known yet.

    Raises:
        ValueError: If a field is empty or *grade* is not a valid YDS grade.
    """
    gym_name = _required(gym_name, "gym name")
    rope_number = _required(rope_number, "rope number")
    color = _required(color, "color")
    set_date = _required(set_date, "set date")
    grade = _required(grade, "grade")
    if not is_valid_grade(grade):
        raise ValueError(f"invalid grade {grade!r}")
    grade = normalize_grade(grade)
    now = now or now_iso()

    rows: list[dict[str, Any]] = []
    gyms = list(store.gyms)
    gym = _find_gym(store, gym_name)
    if gym is None:
        gym = Gym(name=gym_name, created_at=now, updated_at=now)
        gyms.append(gym)
        rows.append(build_gym_sync_row(gym))

    route_id = to_route_id(gym.name, rope_number, color, set_date)
    routes = list(store.routes)
    existing = next((index for index, route in enumerate(routes) if route.route_id == route_id), None)
    if existing is None:
        route = Route(
            route_id=route_id,
            gym_name=gym.name,
            rope_number=rope_number,
            color=color,
            set_date=set_date,
            grade=grade,
            created_at=now,
            updated_at=now,
        )
        routes.append(route)
    elif routes[existing].grade == grade:
        return LocalEdit(data=store)
    else:
        route = routes[existing].model_copy(update={"grade": grade, "updated_at": now})
        routes[existing] = route

    rows.append(build_route_sync_row(route))
    return LocalEdit(data=store.model_copy(update={"gyms": gyms, "routes": routes}), rows=rows)


def log_attempt(
    store: Store,
    route_id: str,
    climb_date: str,
    climb_style: ClimbStyle = ClimbStyle.TOP_ROPE,
    completion_style: CompletionStyle = CompletionStyle.ATTEMPT,
    notes: str = "",
    now: str | None = None,
) -> LocalEdit:
    """Append an attempt to the route's session on *climb_date*.

    Raises:
        ValueError: If the route is unknown or *climb_date* is empty.
    """
    climb_date = _required(climb_date, "climb date")
    if not any(route.route_id == route_id for route in store.routes):
        raise ValueError(f"unknown route {route_id!r}")

    now = now or now_iso()
    attempt = Attempt(
        attempt_id=create_id(),
        route_id=route_id,
        climb_date=climb_date,
        attempt_index=next_attempt_index(store.attempts, route_id, climb_date),
        climb_style=climb_style,
        completion_style=completion_style,
        notes=notes,
        created_at=now,
        updated_at=now,
    )
    return LocalEdit(
        data=store.model_copy(update={"attempts": [*store.attempts, attempt]}),
        rows=[build_attempt_sync_row(attempt)],
    )


# ---------------------------------------------------------------------------
# Deletions
# ---------------------------------------------------------------------------


def _delete(store: Store, targets: list[TombstoneRow], now: str) -> LocalEdit:
    # Local deletes are unconditional, so the propagator gets no timestamp.
    result = apply_tombstones(store, targets)
    now_ms = parse_timestamp_ms(now)
    tombstones = [
        TombstoneRow(target.record_type, target.target, now_ms).to_sync_row() for target in targets
    ]
    return LocalEdit(data=result.data, tombstones=tombstones)


def delete_gym(store: Store, name: str, now: str | None = None) -> LocalEdit:
    """Delete a gym with its routes and their attempts; unknown gyms are a no-op."""
    gym = _find_gym(store, name)
    if gym is None:
        return LocalEdit(data=store)

    route_ids = [route.route_id for route in store.routes if gym_key(route.gym_name) == gym.key]
    targets = [TombstoneRow(RecordType.TOMBSTONE_GYM, gym.name)]
    targets += [TombstoneRow(RecordType.TOMBSTONE_ROUTE, route_id) for route_id in route_ids]
    targets += [
        TombstoneRow(RecordType.TOMBSTONE_ATTEMPT, attempt.attempt_id)
        for attempt in store.attempts
        if attempt.route_id in route_ids
    ]
    return _delete(store, targets, now or now_iso())


def delete_route(store: Store, route_id: str, now: str | None = None) -> LocalEdit:
    """Delete a route and its attempts; unknown routes are a no-op."""
    if not any(route.route_id == route_id for route in store.routes):
        return LocalEdit(data=store)

    targets = [TombstoneRow(RecordType.TOMBSTONE_ROUTE, route_id)]
    targets += [
        TombstoneRow(RecordType.TOMBSTONE_ATTEMPT, attempt.attempt_id)
        for attempt in store.attempts
        if attempt.route_id == route_id
    ]
    return _delete(store, targets, now or now_iso())


def delete_attempt(store: Store, attempt_id: str, now: str | None = None) -> LocalEdit:
    if not any(attempt.attempt_id == attempt_id for attempt in store.attempts):
        return LocalEdit(data=store)
    return _delete(store, [TombstoneRow(RecordType.TOMBSTONE_ATTEMPT, attempt_id)], now or now_iso())
