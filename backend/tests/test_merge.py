"""Tests for the newest-wins merge engine."""

from __future__ import annotations

import pytest

from climbnotes.sync.merge import is_incoming_newer, merge, pick_earlier_timestamp
from climbnotes.sync.normalizer import ParsedBatch, parse_rows
from climbnotes.sync.records import Attempt, Gym, Route, Store, SyncRecord

T0 = "2024-01-01T00:00:00.000Z"
T1 = "2024-01-01T00:00:00.001Z"
T2 = "2024-02-01T00:00:00.000Z"


def _route(grade: str = "5.8", created_at: str = T0, updated_at: str | None = T0) -> Route:
    return Route(
        route_id="Base:12:red:2024-01-01",
        gym_name="Base",
        rope_number="12",
        color="red",
        set_date="2024-01-01",
        grade=grade,
        created_at=created_at,
        updated_at=updated_at,
    )


def _attempt(attempt_id: str, index: int, route_id: str = "Base:12:red:2024-01-01", **kw) -> Attempt:
    return Attempt(
        attempt_id=attempt_id,
        route_id=route_id,
        climb_date="2024-05-01",
        attempt_index=index,
        created_at=kw.pop("created_at", T0),
        **kw,
    )


def _store() -> Store:
    return Store(gyms=[Gym(name="Base", created_at=T0, updated_at=T0)], routes=[_route()])


class TestIsIncomingNewer:
    def test_strictly_newer_wins(self):
        assert is_incoming_newer(_route(updated_at=T1), _route(updated_at=T0))

    def test_tie_keeps_existing(self):
        assert not is_incoming_newer(_route(updated_at=T0), _route(updated_at=T0))

    def test_incoming_without_timestamp_never_wins(self):
        assert not is_incoming_newer(_route(updated_at=None), _route(updated_at=None))

    def test_existing_without_timestamp_loses(self):
        assert is_incoming_newer(_route(updated_at=T0), _route(updated_at=None))

    def test_pick_earlier_timestamp(self):
        assert pick_earlier_timestamp(T2, T0) == T0
        assert pick_earlier_timestamp("2024-01-01T01:00:00+01:00", T1) == "2024-01-01T01:00:00+01:00"


class TestMerge:
    def test_newer_route_overwrites_and_keeps_created_at(self):
        incoming = ParsedBatch(routes=[_route(grade="5.9", created_at=T2, updated_at=T1)])

        summary = merge(_store(), incoming)

        [route] = summary.data.routes
        assert route.grade == "5.9"
        assert route.updated_at == T1
        assert route.created_at == T0
        assert summary.updated_routes == 1
        assert summary.added_routes == 0

    def test_older_route_is_discarded(self):
        current = Store(routes=[_route(grade="5.8", updated_at=T2)])
        summary = merge(current, ParsedBatch(routes=[_route(grade="5.9", updated_at=T1)]))
        assert summary.data.routes[0].grade == "5.8"
        assert summary.updated_routes == 0

    def test_gym_name_matching_is_case_insensitive(self):
        batch = parse_rows([{"record_type": "gym", "gym_name": " base "}], T2)

        summary = merge(_store(), batch)

        assert [gym.name for gym in summary.data.gyms] == ["Base"]
        assert summary.added_gyms == 0

    def test_route_implies_missing_gym(self):
        route = _route().model_copy(update={"gym_name": "Annex", "route_id": "Annex:1:blue:d"})
        summary = merge(Store(), ParsedBatch(routes=[route]))
        assert [gym.name for gym in summary.data.gyms] == ["Annex"]
        assert summary.data.gyms[0].created_at == T0

    def test_orphan_attempts_are_skipped(self):
        batch = ParsedBatch(attempts=[_attempt("a1", 1), _attempt("a2", 1, route_id="missing")])

        summary = merge(_store(), batch)

        assert [attempt.attempt_id for attempt in summary.data.attempts] == ["a1"]
        assert summary.skipped_attempts == 1
        assert summary.added_attempts == 1

    def test_attempt_for_route_in_same_batch_is_kept(self):
        route = _route().model_copy(update={"route_id": "new-route"})
        batch = ParsedBatch(routes=[route], attempts=[_attempt("a1", 1, route_id="new-route")])
        summary = merge(Store(), batch)
        assert summary.skipped_attempts == 0
        assert len(summary.data.attempts) == 1

    def test_merge_renumbers_colliding_attempts(self):
        current = Store(routes=[_route()], attempts=[_attempt("a1", 1, created_at=T0)])
        batch = ParsedBatch(attempts=[_attempt("a2", 1, created_at=T1)])

        summary = merge(current, batch)

        indices = {attempt.attempt_id: attempt.attempt_index for attempt in summary.data.attempts}
        assert indices == {"a1": 1, "a2": 2}

    def test_merge_is_idempotent(self):
        batch = parse_rows(
            [
                {"record_type": "gym", "gym_name": "Annex", "updated_at": T1},
                {
                    "record_type": "route",
                    "gym_name": "Base",
                    "rope_number": "12",
                    "color": "red",
                    "set_date": "2024-01-01",
                    "grade": "5.9",
                    "updated_at": T1,
                },
            ],
            T2,
        )
        once = merge(_store(), batch).data
        twice = merge(once, batch).data
        assert twice == once

    def test_current_store_is_not_modified(self):
        current = _store()
        merge(current, ParsedBatch(routes=[_route(grade="5.11a", updated_at=T2)]))
        assert current.routes[0].grade == "5.8"


class TestOrderIndependence:
    @staticmethod
    def _contents(store: Store) -> tuple[dict, dict, dict]:
        return (
            {gym.key: gym for gym in store.gyms},
            {route.key: route for route in store.routes},
            {attempt.key: attempt for attempt in store.attempts},
        )

    def test_independent_rows_commute(self):
        gym_row = {"record_type": "gym", "gym_name": "Annex", "updated_at": T1}
        route_row = {
            "record_type": "route",
            "gym_name": "Base",
            "rope_number": "12",
            "color": "red",
            "set_date": "2024-01-01",
            "grade": "5.9",
            "updated_at": T2,
        }
        attempt_row = {
            "record_type": "attempt",
            "attempt_id": "a9",
            "route_id": "Base:12:red:2024-01-01",
            "climb_date": "2024-05-01",
            "attempt_index": "1",
            "created_at": T1,
        }

        forward = merge(_store(), parse_rows([gym_row, route_row, attempt_row], T2)).data
        backward = merge(_store(), parse_rows([attempt_row, route_row, gym_row], T2)).data

        assert self._contents(forward) == self._contents(backward)
        assert {gym.name for gym in forward.gyms} == {"Base", "Annex"}
        assert forward.routes[0].grade == "5.9"


class TestRecordKeys:
    def test_every_record_kind_has_a_key(self):
        assert Gym(name="Base", created_at=T0).key == "base"
        assert _route().key == "Base:12:red:2024-01-01"
        assert _attempt("a1", 1).key == "a1"

    def test_base_record_cannot_be_instantiated(self):
        with pytest.raises(TypeError):
            SyncRecord(created_at=T0)
