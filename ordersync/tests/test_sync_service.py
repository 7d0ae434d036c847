"""Sync service and scheduler tests"""

import asyncio

import pytest

from ordersync.core.config import SyncConfig
from ordersync.models.connections import SourceConnection
from ordersync.schemas.sync import Checkpoint, Page, RecordCategory, SyncClass, SyncStage
from ordersync.services.scheduler import SyncScheduler
from ordersync.services.sync_service import SyncService

from conftest import ScriptedSource, break_writes, make_orders, two_page_source


class GatedSource(ScriptedSource):
    """Holds every fetch until ``release`` is set."""

    def __init__(self, pages):
        super().__init__(pages)
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def fetch_page(self, cursor, connection, query, timeout):
        self.entered.set()
        await self.release.wait()
        return await super().fetch_page(cursor, connection, query, timeout)


def single_page(count=10):
    return ScriptedSource({None: Page(records=make_orders(count), next_cursor=None)})


class TestSyncService:
    """Trigger surface, status and run history"""

    @pytest.mark.asyncio
    async def test_run_full_records_history(self, session_factory, connections, sleep, config):
        service = SyncService(session_factory, two_page_source(), config, sleep=sleep)

        result = await service.run_full("shop-a")

        assert result.success is True
        assert result.total_items == 300
        runs = service.list_runs(tenant_id="shop-a")
        assert len(runs) == 1
        assert runs[0].status == "completed"
        assert runs[0].items_synced == 300
        assert runs[0].pages_processed == 2
        assert runs[0].ended_at is not None

    @pytest.mark.asyncio
    async def test_completed_run_stamps_connection(self, session_factory, connections, sleep, config):
        service = SyncService(session_factory, single_page(), config, sleep=sleep)

        await service.run_incremental("shop-a")

        with session_factory() as db:
            row = db.get(SourceConnection, "shop-a")
            assert row.last_incremental_sync_at is not None
            assert row.last_full_sync_at is None

    @pytest.mark.asyncio
    async def test_aborted_run_is_recorded(self, session_factory, connections, sleep, config):
        service = SyncService(session_factory, single_page(), config, sleep=sleep)

        result = await service.run_full("missing-shop")

        assert result.stage == SyncStage.ABORTED
        runs = service.list_runs(status="aborted")
        assert [run.tenant_id for run in runs] == ["missing-shop"]
        assert "No connection" in runs[0].error_message

    @pytest.mark.asyncio
    async def test_duplicate_run_is_refused(self, session_factory, connections, sleep, config):
        source = GatedSource({None: Page(records=make_orders(5), next_cursor=None)})
        service = SyncService(session_factory, source, config, sleep=sleep)

        first = asyncio.create_task(service.run_full("shop-a"))
        await source.entered.wait()

        duplicate = await service.run_full("shop-a")
        assert duplicate.success is False
        assert duplicate.error == "Sync already in progress"
        assert service.is_running("shop-a", SyncClass.FULL)
        assert service.start("shop-a", SyncClass.FULL) is False

        source.release.set()
        result = await first

        assert result.success is True
        assert not service.is_running("shop-a", SyncClass.FULL)
        assert len(service.list_runs()) == 1

    @pytest.mark.asyncio
    async def test_background_start_and_shutdown(self, session_factory, connections, sleep, config):
        service = SyncService(session_factory, two_page_source(), config, sleep=sleep)

        assert service.start("shop-a", SyncClass.MANUAL) is True
        await service.shutdown()

        status = service.get_status("shop-a")
        assert status is not None
        assert status.stage.is_terminal

    @pytest.mark.asyncio
    async def test_shutdown_cancels_in_flight_runs(self, session_factory, connections, sleep, config):
        source = GatedSource(
            {
                None: Page(records=make_orders(5), next_cursor="page-2"),
                "page-2": Page(records=make_orders(5, start=6), next_cursor=None),
            }
        )
        service = SyncService(session_factory, source, config, sleep=sleep)

        service.start("shop-a", SyncClass.FULL)
        await source.entered.wait()
        shutdown = asyncio.create_task(service.shutdown())
        await asyncio.sleep(0)
        source.release.set()
        await shutdown

        status = service.get_status("shop-a")
        assert status.stage == SyncStage.CANCELLED
        checkpoint = service.checkpoints.load("shop-a", SyncClass.FULL)
        assert checkpoint.cursor == "page-2"
        assert service.list_runs()[0].status == "cancelled"

    @pytest.mark.asyncio
    async def test_status_reconstructed_from_checkpoint(self, session_factory, connections, sleep, config):
        service = SyncService(session_factory, single_page(), config, sleep=sleep)
        service.checkpoints.save("shop-a", SyncClass.FULL, Checkpoint(current_page=4, cursor="page-5", total_items=1000))

        status = service.get_status("shop-a")

        assert status.sync_class == SyncClass.FULL
        assert status.current_page == 4
        assert status.items_so_far == 1000
        assert "page 5" in status.message

    def test_status_unknown_tenant(self, session_factory, connections, sleep, config):
        service = SyncService(session_factory, single_page(), config, sleep=sleep)
        assert service.get_status("nobody") is None

    @pytest.mark.asyncio
    async def test_manual_run_replays_failed_batches(self, session_factory, connections, sleep):
        config = SyncConfig(max_retries=0)
        service = SyncService(session_factory, single_page(30), config, sleep=sleep)
        repository = service.records.repository(RecordCategory.ORDERS)
        break_writes(repository, {"1030"}, times=1)

        result = await service.run_manual("shop-a")

        assert result.failed_batch_count == 1
        assert repository.count("shop-a") == 30
        assert service.ledger.load("shop-a", SyncClass.MANUAL, RecordCategory.ORDERS) == []

    @pytest.mark.asyncio
    async def test_full_run_leaves_failed_batches_for_explicit_replay(self, session_factory, connections, sleep):
        config = SyncConfig(max_retries=0)
        service = SyncService(session_factory, single_page(30), config, sleep=sleep)
        repository = service.records.repository(RecordCategory.ORDERS)
        break_writes(repository, {"1030"}, times=1)

        await service.run_full("shop-a")
        assert len(service.ledger.load("shop-a", SyncClass.FULL, RecordCategory.ORDERS)) == 1

        replay = await service.replay_failed_batches("shop-a", SyncClass.FULL)
        assert replay.recovered == 1
        assert repository.count("shop-a") == 30


class TestScheduler:
    """Multi-tenant scheduled runs"""

    @pytest.mark.asyncio
    async def test_run_once_syncs_every_active_tenant(self, session_factory, connections, sleep, config):
        connections.save_connection("shop-b", "shop-b.example.com", "token-b")
        connections.save_connection("shop-c", "shop-c.example.com", "token-c", status="disabled")
        service = SyncService(session_factory, single_page(5), config, sleep=sleep)
        scheduler = SyncScheduler(service, stagger=1.0, sleep=sleep)

        results = await scheduler.run_once()

        assert sorted(results) == ["shop-a", "shop-b"]
        assert all(result.success for result in results.values())
        assert all(result.sync_class == SyncClass.INCREMENTAL for result in results.values())
        assert 1.0 in sleep.calls

    @pytest.mark.asyncio
    async def test_run_once_without_connections(self, session_factory, sleep, config):
        service = SyncService(session_factory, single_page(), config, sleep=sleep)
        assert await SyncScheduler(service, sleep=sleep).run_once() == {}

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, session_factory, connections, sleep):
        for name in ("shop-b", "shop-c"):
            connections.save_connection(name, f"{name}.example.com", "token")
        in_flight = {"now": 0, "peak": 0}

        class CountingSource(ScriptedSource):
            async def fetch_page(self, cursor, connection, query, timeout):
                in_flight["now"] += 1
                in_flight["peak"] = max(in_flight["peak"], in_flight["now"])
                await asyncio.sleep(0.01)
                in_flight["now"] -= 1
                return await super().fetch_page(cursor, connection, query, timeout)

        source = CountingSource({None: Page(records=make_orders(3), next_cursor=None)})
        service = SyncService(session_factory, source, SyncConfig(max_concurrent_tenants=1), sleep=sleep)

        results = await SyncScheduler(service, stagger=0, sleep=sleep).run_once()

        assert len(results) == 3
        assert in_flight["peak"] == 1

    @pytest.mark.asyncio
    async def test_start_and_stop(self, session_factory, connections, config):
        service = SyncService(session_factory, single_page(), config)
        gate = asyncio.Event()

        async def park(seconds):
            gate.set()
            await asyncio.Event().wait()

        scheduler = SyncScheduler(service, interval=3600, stagger=0, sleep=park)
        scheduler.start()
        await asyncio.wait_for(gate.wait(), timeout=5)
        await scheduler.stop()

        assert service.list_runs(tenant_id="shop-a")[0].status == "completed"
