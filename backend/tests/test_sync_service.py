"""Tests for the SyncService push/pull cycle.

The remote gateway is mocked for the unit tests so failures can be injected
at each step; the last class runs two devices against the in-process API.
"""

from __future__ import annotations

from functools import partial
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient

from climbnotes.remote_gateway.client import PullPayload, PushPayload, RemoteSyncClient, RemoteSyncError
from climbnotes.services.local_edits import add_gym, add_route, delete_route, log_attempt
from climbnotes.services.sync_service import SyncService
from climbnotes.storage.kv import MemoryStorage, StorageError
from climbnotes.storage.persistence import StorePersistence
from climbnotes.storage.sync_meta import SyncMeta, SyncMetaStore
from climbnotes.storage.sync_queue import SyncQueue
from climbnotes.storage.tombstone_log import TombstoneLog
from climbnotes.sync.cursor import SyncCursor

USER = "climber-1"
ROUTE_ID = "Base:12:red:2024-01-01"


class BrokenStorage(MemoryStorage):
    def set_item(self, key: str, value: str) -> None:
        raise OSError("read-only")


def _gateway(pull_rows: list[dict] | None = None) -> MagicMock:
    gateway = MagicMock()
    gateway.user_id = USER
    gateway.push = AsyncMock(return_value=PushPayload(applied=0, server_time="t"))
    gateway.pull = AsyncMock(return_value=PullPayload(rows=pull_rows or [], server_time="t"))
    return gateway


def _service(gateway, storage: MemoryStorage | None = None, persistence_storage=None) -> SyncService:
    if storage is None:
        storage = MemoryStorage()
    if persistence_storage is None:
        persistence_storage = storage
    return SyncService(
        gateway=gateway,
        persistence=StorePersistence(persistence_storage),
        queue=SyncQueue(storage),
        tombstone_log=TombstoneLog(storage),
        meta_store=SyncMetaStore(storage),
    )


# ---------------------------------------------------------------------------
# Push step
# ---------------------------------------------------------------------------


class TestPush:
    @pytest.mark.asyncio
    async def test_nothing_queued_skips_push(self):
        gateway = _gateway()
        result = await _service(gateway).sync()
        gateway.push.assert_not_awaited()
        assert result.pushed == 0

    @pytest.mark.asyncio
    async def test_queue_and_tombstones_are_pushed_and_cleared(self):
        storage = MemoryStorage()
        gateway = _gateway()
        SyncQueue(storage).add_sync_rows(USER, [{"record_type": "gym", "gym_name": "Base"}])
        TombstoneLog(storage).add_tombstones(USER, [{"record_type": "tombstone_route", "route_id": "r1"}])

        result = await _service(gateway, storage).sync(USER)

        pushed_rows = gateway.push.await_args.args[0]
        assert [row["record_type"] for row in pushed_rows] == ["gym", "tombstone_route"]
        assert result.pushed == 2
        assert SyncQueue(storage).read_sync_queue(USER) == []
        assert TombstoneLog(storage).read_tombstones(USER) == []

    @pytest.mark.asyncio
    async def test_failed_push_leaves_everything_intact(self):
        storage = MemoryStorage()
        gateway = _gateway()
        gateway.push.side_effect = RemoteSyncError("offline")
        SyncQueue(storage).add_sync_rows(USER, [{"record_type": "gym", "gym_name": "Base"}])

        with pytest.raises(RemoteSyncError):
            await _service(gateway, storage).sync(USER)

        gateway.pull.assert_not_awaited()
        assert len(SyncQueue(storage).read_sync_queue(USER)) == 1

    @pytest.mark.asyncio
    async def test_conflicts_are_counted_and_dequeued(self):
        storage = MemoryStorage()
        gateway = _gateway()
        gateway.push.return_value = PushPayload(
            conflicts=[{"sync_key": "gym:Base", "record_type": "gym"}], server_time="t"
        )
        SyncQueue(storage).add_sync_rows(USER, [{"record_type": "gym", "gym_name": "Base"}])

        result = await _service(gateway, storage).sync(USER)

        assert result.conflicts == 1
        assert SyncQueue(storage).read_sync_queue(USER) == []


# ---------------------------------------------------------------------------
# Pull step
# ---------------------------------------------------------------------------


class TestPull:
    @pytest.mark.asyncio
    async def test_pulled_rows_are_applied_and_cursor_advanced(self):
        storage = MemoryStorage()
        rows = [
            {"sync_key": "gym:Base", "record_type": "gym", "gym_name": "Base", "updated_at_ms": 100},
            {
                "sync_key": f"route:{ROUTE_ID}",
                "record_type": "route",
                "gym_name": "Base",
                "route_id": ROUTE_ID,
                "rope_number": "12",
                "color": "red",
                "set_date": "2024-01-01",
                "grade": "5.8",
                "updated_at_ms": 300,
            },
            {"sync_key": "gym:Annex", "record_type": "gym", "gym_name": "Annex", "updated_at_ms": 200},
        ]
        service = _service(_gateway(rows), storage)

        result = await service.sync(USER)

        store = StorePersistence(storage).read_data()
        assert sorted(gym.name for gym in store.gyms) == ["Annex", "Base"]
        assert [route.route_id for route in store.routes] == [ROUTE_ID]
        assert result.pulled == 3
        assert result.cursor == SyncCursor(300, f"route:{ROUTE_ID}")
        assert SyncMetaStore(storage).read(USER).cursor == SyncCursor(300, f"route:{ROUTE_ID}")

    @pytest.mark.asyncio
    async def test_pulled_tombstone_reports_cascaded_deletions(self):
        storage = MemoryStorage()
        gateway = _gateway(
            [
                {
                    "sync_key": f"route:{ROUTE_ID}",
                    "record_type": "tombstone_route",
                    "route_id": ROUTE_ID,
                    "updated_at": "2999-01-01T00:00:00Z",
                }
            ]
        )
        service = _service(gateway, storage)
        await service.apply_local_edit(
            USER, partial(add_route, gym_name="Base", rope_number="12", color="red", set_date="2024-01-01", grade="5.8")
        )
        await service.apply_local_edit(USER, partial(log_attempt, route_id=ROUTE_ID, climb_date="2024-05-01"))

        result = await service.sync(USER)

        assert result.tombstones_applied == 1
        assert result.records_deleted == 2
        store = StorePersistence(storage).read_data()
        assert store.routes == []
        assert store.attempts == []

    @pytest.mark.asyncio
    async def test_unrepresentable_timestamp_does_not_block_cursor(self):
        storage = MemoryStorage()
        gateway = _gateway(
            [
                {
                    "sync_key": "gym:Base",
                    "record_type": "gym",
                    "gym_name": "Base",
                    "created_at": "0001-01-01T00:00:00+01:00",
                    "updated_at_ms": 500,
                }
            ]
        )

        result = await _service(gateway, storage).sync(USER)

        assert [gym.name for gym in StorePersistence(storage).read_data().gyms] == ["Base"]
        assert SyncMetaStore(storage).read(USER).cursor == SyncCursor(500, "gym:Base")
        assert result.skipped_rows == 0

    @pytest.mark.asyncio
    async def test_pull_uses_stored_cursor(self):
        storage = MemoryStorage()
        SyncMetaStore(storage).write(USER, SyncMeta(last_sync_at_ms=42, last_sync_key="gym:A"))
        gateway = _gateway()

        result = await _service(gateway, storage).sync(USER)

        gateway.pull.assert_awaited_once_with(SyncCursor(42, "gym:A"))
        assert result.cursor == SyncCursor(42, "gym:A")
        assert SyncMetaStore(storage).read(USER).last_synced_at is not None

    @pytest.mark.asyncio
    async def test_failed_pull_keeps_cursor(self):
        storage = MemoryStorage()
        SyncMetaStore(storage).write(USER, SyncMeta(last_sync_at_ms=42, last_sync_key="gym:A"))
        gateway = _gateway()
        gateway.pull.side_effect = RemoteSyncError("timeout")

        with pytest.raises(RemoteSyncError):
            await _service(gateway, storage).sync(USER)

        assert SyncMetaStore(storage).read(USER).cursor == SyncCursor(42, "gym:A")

    @pytest.mark.asyncio
    async def test_failed_save_keeps_cursor(self):
        storage = MemoryStorage()
        gateway = _gateway([{"record_type": "gym", "gym_name": "Base", "updated_at_ms": 900}])
        service = _service(gateway, storage, persistence_storage=BrokenStorage())

        with pytest.raises(StorageError):
            await service.sync(USER)

        assert SyncMetaStore(storage).read(USER).cursor is None


# ---------------------------------------------------------------------------
# Local edits
# ---------------------------------------------------------------------------


class TestApplyLocalEdit:
    @pytest.mark.asyncio
    async def test_edit_is_saved_and_queued(self):
        storage = MemoryStorage()
        service = _service(_gateway(), storage)

        await service.apply_local_edit(USER, partial(add_gym, name="Base"))

        assert [gym.name for gym in StorePersistence(storage).read_data().gyms] == ["Base"]
        assert [row["gym_name"] for row in SyncQueue(storage).read_sync_queue(USER)] == ["Base"]

    @pytest.mark.asyncio
    async def test_delete_dequeues_rows_and_logs_tombstones(self):
        storage = MemoryStorage()
        service = _service(_gateway(), storage)
        await service.apply_local_edit(
            USER, partial(add_route, gym_name="Base", rope_number="12", color="red", set_date="2024-01-01", grade="5.9")
        )

        await service.apply_local_edit(USER, partial(delete_route, route_id=ROUTE_ID))

        queued = [row["record_type"] for row in SyncQueue(storage).read_sync_queue(USER)]
        assert queued == ["gym"]
        assert TombstoneLog(storage).read_tombstones(USER)[0]["route_id"] == ROUTE_ID

    @pytest.mark.asyncio
    async def test_recreating_entity_drops_stale_tombstone(self):
        storage = MemoryStorage()
        service = _service(_gateway(), storage)
        route = partial(add_route, gym_name="Base", rope_number="12", color="red", set_date="2024-01-01", grade="5.9")
        await service.apply_local_edit(USER, route)
        await service.apply_local_edit(USER, partial(delete_route, route_id=ROUTE_ID))

        await service.apply_local_edit(USER, route)

        assert TombstoneLog(storage).read_tombstones(USER) == []

    @pytest.mark.asyncio
    async def test_noop_edit_touches_nothing(self):
        storage = MemoryStorage()
        service = _service(_gateway(), storage)
        await service.apply_local_edit(USER, partial(delete_route, route_id="missing"))
        assert storage.get_item("climbingNotesData") is None


# ---------------------------------------------------------------------------
# Two devices against the in-process API
# ---------------------------------------------------------------------------


class TestTwoDevices:
    @pytest.mark.asyncio
    async def test_edits_and_deletes_converge(self, test_app):
        def device() -> tuple[SyncService, MemoryStorage]:
            http = AsyncClient(transport=ASGITransport(app=test_app), base_url="http://test")
            storage = MemoryStorage()
            return _service(RemoteSyncClient("http://test", USER, client=http), storage), storage

        phone, phone_storage = device()
        laptop, laptop_storage = device()

        await phone.apply_local_edit(
            USER, partial(add_route, gym_name="Base", rope_number="12", color="red", set_date="2024-01-01", grade="10a")
        )
        await phone.apply_local_edit(USER, partial(log_attempt, route_id=ROUTE_ID, climb_date="2024-05-01"))
        pushed = await phone.sync()
        assert pushed.pushed == 3

        await laptop.sync()
        laptop_store = StorePersistence(laptop_storage).read_data()
        assert [route.grade for route in laptop_store.routes] == ["5.10a"]
        assert [attempt.attempt_index for attempt in laptop_store.attempts] == [1]

        await laptop.apply_local_edit(USER, partial(delete_route, route_id=ROUTE_ID))
        await laptop.sync()
        await phone.sync()

        phone_store = StorePersistence(phone_storage).read_data()
        assert phone_store.routes == []
        assert phone_store.attempts == []
        assert [gym.name for gym in phone_store.gyms] == ["Base"]


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


class TestCreateSyncService:
    @pytest.mark.asyncio
    async def test_wires_file_storage_from_settings(self, tmp_path):
        from climbnotes.config import Settings
        from climbnotes.services.sync_service import create_sync_service
        from climbnotes.sync.records import Gym, Store

        settings = Settings(
            DATA_DIR=str(tmp_path / "primary"),
            FALLBACK_DATA_DIR=str(tmp_path / "fallback"),
            SYNC_API_URL="http://sync.local",
            SYNC_USER_ID=USER,
        )
        service = create_sync_service(settings)
        try:
            service._persistence.save_data(Store(gyms=[Gym(name="Base", created_at="2024-01-01")]))
        finally:
            await service._gateway.close()

        assert len(list((tmp_path / "primary").iterdir())) == 1
        assert len(list((tmp_path / "fallback").iterdir())) == 1
        assert service._gateway.user_id == USER

    def test_requires_user_id(self, tmp_path):
        from climbnotes.config import Settings
        from climbnotes.services.sync_service import create_sync_service

        with pytest.raises(ValueError):
            create_sync_service(Settings(DATA_DIR=str(tmp_path), SYNC_USER_ID=""))
