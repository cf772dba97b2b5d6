"""Tombstone propagation: apply delete intents to a merged Store.

A tombstone deletes its target when either side lacks a usable timestamp or
when ``tombstone >= target`` (deletes win ties).  Deleting a gym cascades to
its routes and their attempts; deleting a route cascades to its attempts.
A tombstone whose target is absent is a no-op.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from climbnotes.constants import RecordType
from climbnotes.sync.normalizer import TombstoneRow
from climbnotes.sync.records import Attempt, Gym, Route, Store, gym_key

logger = logging.getLogger(__name__)


@dataclass
class TombstoneResult:
    data: Store
    deleted_gyms: int = 0
    deleted_routes: int = 0
    deleted_attempts: int = 0


def should_apply_tombstone(local_ms: int | None, tombstone_ms: int | None) -> bool:
    if tombstone_ms is None or local_ms is None:
        return True
    return tombstone_ms >= local_ms


def apply_tombstones(store: Store, tombstones: Iterable[TombstoneRow]) -> TombstoneResult:
    """Apply *tombstones* in order and return the reduced Store.

    *store* is not modified.
    """
    gyms: list[Gym] = list(store.gyms)
    routes: list[Route] = list(store.routes)
    attempts: list[Attempt] = list(store.attempts)

    for tombstone in tombstones:
        if tombstone.record_type is RecordType.TOMBSTONE_GYM:
            key = gym_key(tombstone.target)
            gym = next((item for item in gyms if item.key == key), None)
            if gym is None or not should_apply_tombstone(gym.local_timestamp_ms, tombstone.updated_at_ms):
                continue
            gyms = [item for item in gyms if item.key != key]
            route_ids = {route.route_id for route in routes if gym_key(route.gym_name) == key}
            routes = [route for route in routes if route.route_id not in route_ids]
            attempts = [attempt for attempt in attempts if attempt.route_id not in route_ids]
            logger.debug("Tombstone removed gym %s with %d routes", gym.name, len(route_ids))

        elif tombstone.record_type is RecordType.TOMBSTONE_ROUTE:
            route = next((item for item in routes if item.route_id == tombstone.target), None)
            if route is None or not should_apply_tombstone(route.local_timestamp_ms, tombstone.updated_at_ms):
                continue
            routes = [item for item in routes if item.route_id != tombstone.target]
            attempts = [attempt for attempt in attempts if attempt.route_id != tombstone.target]
            logger.debug("Tombstone removed route %s", tombstone.target)

        elif tombstone.record_type is RecordType.TOMBSTONE_ATTEMPT:
            attempt = next((item for item in attempts if item.attempt_id == tombstone.target), None)
            if attempt is None or not should_apply_tombstone(
                attempt.local_timestamp_ms, tombstone.updated_at_ms
            ):
                continue
            attempts = [item for item in attempts if item.attempt_id != tombstone.target]
            logger.debug("Tombstone removed attempt %s", tombstone.target)

    return TombstoneResult(
        data=Store(version=store.version, gyms=gyms, routes=routes, attempts=attempts),
        deleted_gyms=len(store.gyms) - len(gyms),
        deleted_routes=len(store.routes) - len(routes),
        deleted_attempts=len(store.attempts) - len(attempts),
    )
