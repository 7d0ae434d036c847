"""Sync orchestrator state machine tests"""

from datetime import datetime, timedelta, timezone

import pytest

from ordersync.core.config import SyncConfig
from ordersync.core.errors import RateLimitError, TransientNetworkError, UpstreamError
from ordersync.core.retry import RetryPolicy
from ordersync.ingestion.base import BasePageSource
from ordersync.ingestion.fetcher import PageFetcher
from ordersync.schemas.sync import Checkpoint, Page, RecordCategory, SyncClass, SyncStage
from ordersync.services.batch_writer import BatchWriter
from ordersync.services.orchestrator import CancellationToken, SyncOrchestrator
from ordersync.services.status_feed import SyncStatusFeed
from ordersync.storage.checkpoints import CheckpointStore
from ordersync.storage.ledger import FailedBatchLedger
from ordersync.storage.records import RecordStore

from conftest import ScriptedSource, break_writes, make_orders, two_page_source

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


class CategorySource(BasePageSource):
    """Routes each fetch to a per-category scripted source."""

    name = "by-category"

    def __init__(self, sources):
        self.sources = sources

    async def fetch_page(self, cursor, connection, query, timeout):
        return await self.sources[query.category].fetch_page(cursor, connection, query, timeout)


class RecordingFeed(SyncStatusFeed):
    def __init__(self):
        super().__init__()
        self.stages = []

    def publish(self, status):
        self.stages.append(status.stage)
        super().publish(status)


class Harness:
    """Wires one orchestrator against the in-memory store and a scripted source."""

    def __init__(self, session_factory, connections, source, sleep, config=None, sync_class=SyncClass.FULL):
        self.config = config or SyncConfig(max_retries=2)
        self.source = source
        self.sleep = sleep
        self.retry = RetryPolicy.from_config(self.config, sleep=sleep)
        self.records = RecordStore(session_factory)
        self.checkpoints = CheckpointStore(session_factory, ttl=self.config.checkpoint_ttl)
        self.writer = BatchWriter(self.records, self.retry, self.config.inter_batch_delay, self.config.batch_size, sleep=sleep)
        self.ledger = FailedBatchLedger(session_factory, self.records, self.writer)
        self.feed = RecordingFeed()
        self.connections = connections
        self.sync_class = sync_class

    def orchestrator(self, tenant_id="shop-a", cancel_token=None, sleep=None, category=RecordCategory.ORDERS):
        return SyncOrchestrator(
            tenant_id=tenant_id,
            sync_class=self.sync_class,
            category=category,
            connections=self.connections,
            fetcher=PageFetcher(self.source, self.retry),
            writer=self.writer,
            records=self.records,
            checkpoints=self.checkpoints,
            ledger=self.ledger,
            feed=self.feed,
            config=self.config,
            cancel_token=cancel_token,
            sleep=sleep or self.sleep,
            clock=lambda: NOW,
        )

    def stored(self, tenant_id="shop-a", category=RecordCategory.ORDERS) -> int:
        return self.records.repository(category).count(tenant_id)


class TestHappyPath:
    """Full runs end to end"""

    @pytest.mark.asyncio
    async def test_two_pages_with_rate_limit_on_page_two(self, session_factory, connections, sleep):
        """300 orders, 250 + 50, a 429 with resume-after=5s on page 2"""
        source = two_page_source({"page-2": [RateLimitError("429", retry_after=5.0)]})
        harness = Harness(session_factory, connections, source, sleep)

        result = await harness.orchestrator().run()

        assert result.success is True
        assert result.stage == SyncStage.COMPLETED
        assert result.total_items == 300
        assert result.pages_processed == 2
        assert result.failed_batch_count == 0
        assert harness.stored() == 300
        assert harness.checkpoints.load("shop-a", SyncClass.FULL) is None
        assert harness.ledger.load("shop-a", SyncClass.FULL, RecordCategory.ORDERS) == []

        # 12 successful batches, each followed by the inter-batch delay
        assert sleep.calls.count(0.1) == 12
        # Inter-page wait, then the server-dictated wait before page 2 is retried
        assert sleep.calls.index(120.0) < sleep.calls.index(5.0)
        assert source.calls == [None, "page-2", "page-2"]

    @pytest.mark.asyncio
    async def test_stage_sequence(self, session_factory, connections, sleep):
        harness = Harness(session_factory, connections, two_page_source(), sleep)

        await harness.orchestrator().run()

        assert harness.feed.stages == [
            SyncStage.INIT,
            SyncStage.FETCHING,
            SyncStage.WRITING,
            SyncStage.CHECKPOINTING,
            SyncStage.WAITING,
            SyncStage.FETCHING,
            SyncStage.WRITING,
            SyncStage.COMPLETED,
        ]
        status = harness.feed.get("shop-a")
        assert status.stage == SyncStage.COMPLETED
        assert status.items_so_far == 300
        assert "300" in status.message

    @pytest.mark.asyncio
    async def test_single_empty_page_completes(self, session_factory, connections, sleep):
        source = ScriptedSource({None: Page(records=[], next_cursor=None)})
        harness = Harness(session_factory, connections, source, sleep)

        result = await harness.orchestrator().run()

        assert result.success is True
        assert result.total_items == 0
        assert result.pages_processed == 1
        assert 120.0 not in sleep.calls

    @pytest.mark.asyncio
    async def test_idempotent_reruns(self, session_factory, connections, sleep):
        harness = Harness(session_factory, connections, two_page_source(), sleep)

        first = await harness.orchestrator().run()
        second = await harness.orchestrator().run()

        assert first.total_items == second.total_items == 300
        assert harness.stored() == 300

    @pytest.mark.asyncio
    async def test_wait_interval_follows_sync_class(self, session_factory, connections, sleep):
        harness = Harness(session_factory, connections, two_page_source(), sleep, sync_class=SyncClass.INCREMENTAL)

        await harness.orchestrator().run()

        assert 30.0 in sleep.calls
        assert 120.0 not in sleep.calls


class TestQueryWindow:
    """First-page window per sync class"""

    @pytest.mark.parametrize(
        "sync_class, created, updated",
        [
            (SyncClass.FULL, NOW - timedelta(days=90), None),
            (SyncClass.INCREMENTAL, None, NOW - timedelta(hours=24)),
            (SyncClass.MANUAL, None, None),
        ],
    )
    def test_build_query(self, session_factory, connections, sleep, sync_class, created, updated):
        harness = Harness(session_factory, connections, two_page_source(), sleep, sync_class=sync_class)
        query = harness.orchestrator().build_query()

        assert query.created_at_min == created
        assert query.updated_at_min == updated
        assert query.page_size == 250


class TestResume:
    """Checkpoint-driven resume"""

    @pytest.mark.asyncio
    async def test_resumes_from_checkpoint_cursor(self, session_factory, connections, sleep):
        harness = Harness(session_factory, connections, two_page_source(), sleep)
        harness.checkpoints.save("shop-a", SyncClass.FULL, Checkpoint(current_page=1, cursor="page-2", total_items=250))

        result = await harness.orchestrator().run()

        assert harness.source.calls == ["page-2"]
        assert result.success is True
        assert result.total_items == 300
        assert result.pages_processed == 2
        assert harness.checkpoints.load("shop-a", SyncClass.FULL) is None

    @pytest.mark.asyncio
    async def test_interrupt_and_resume_matches_uninterrupted_total(self, session_factory, connections, sleep):
        harness = Harness(session_factory, connections, two_page_source(), sleep)
        token = CancellationToken()

        async def cancel_during_wait(seconds):
            if seconds == 120.0:
                token.cancel()

        interrupted = await harness.orchestrator(cancel_token=token, sleep=cancel_during_wait).run()

        assert interrupted.stage == SyncStage.CANCELLED
        assert interrupted.success is False
        checkpoint = harness.checkpoints.load("shop-a", SyncClass.FULL)
        assert (checkpoint.current_page, checkpoint.cursor, checkpoint.total_items) == (1, "page-2", 250)

        resumed = await harness.orchestrator().run()

        assert resumed.total_items == 300
        assert harness.stored() == 300
        assert harness.source.calls == [None, "page-2"]

    @pytest.mark.asyncio
    async def test_checkpoint_saved_before_each_wait(self, session_factory, connections):
        pages = {
            None: Page(records=make_orders(10), next_cursor="page-2"),
            "page-2": Page(records=make_orders(10, start=11), next_cursor="page-3"),
            "page-3": Page(records=make_orders(10, start=21), next_cursor=None),
        }
        seen = []

        harness = Harness(session_factory, connections, ScriptedSource(pages), None)

        async def inspect_checkpoint(seconds):
            if seconds == 120.0:
                checkpoint = harness.checkpoints.load("shop-a", SyncClass.FULL)
                seen.append((checkpoint.current_page, checkpoint.cursor, checkpoint.total_items))

        harness.sleep = inspect_checkpoint
        harness.retry.sleep = inspect_checkpoint
        harness.writer.sleep = inspect_checkpoint

        await harness.orchestrator().run()

        assert seen == [(1, "page-2", 10), (2, "page-3", 20)]


    @pytest.mark.asyncio
    async def test_resumed_page_drops_its_failed_descriptor(self, session_factory, connections, sleep):
        source = two_page_source({"page-2": [UpstreamError("HTTP 404")]})
        harness = Harness(session_factory, connections, source, sleep)

        aborted = await harness.orchestrator().run()
        assert aborted.failed_page_count == 1

        resumed = await harness.orchestrator().run()

        assert resumed.success is True
        assert resumed.total_items == 300
        assert resumed.pages_processed == 2
        assert resumed.failed_page_count == 0
        assert "failed pages" not in harness.feed.get("shop-a").message

    @pytest.mark.asyncio
    async def test_page_failing_again_on_resume_is_counted_once(self, session_factory, connections, sleep):
        source = two_page_source({"page-2": [UpstreamError("HTTP 404"), UpstreamError("HTTP 404")]})
        harness = Harness(session_factory, connections, source, sleep)

        await harness.orchestrator().run()
        second = await harness.orchestrator().run()

        assert second.stage == SyncStage.ABORTED
        assert second.failed_page_count == 1
        checkpoint = harness.checkpoints.load("shop-a", SyncClass.FULL)
        assert [page.page for page in checkpoint.failed_pages] == [2]


class TestCategories:
    """Runs for different categories of one tenant and sync class"""

    @pytest.mark.asyncio
    async def test_checkpoints_are_kept_per_category(self, session_factory, connections, sleep):
        orders = two_page_source({"page-2": [UpstreamError("HTTP 404")]})
        products = ScriptedSource(
            {None: Page(records=[{"id": i, "title": f"Item {i}"} for i in range(1, 6)], next_cursor=None)}
        )
        source = CategorySource({RecordCategory.ORDERS: orders, RecordCategory.PRODUCTS: products})
        harness = Harness(session_factory, connections, source, sleep)

        aborted = await harness.orchestrator().run()
        assert aborted.stage == SyncStage.ABORTED

        result = await harness.orchestrator(category=RecordCategory.PRODUCTS).run()

        assert result.success is True
        assert result.total_items == 5
        assert products.calls == [None]
        assert harness.stored(category=RecordCategory.PRODUCTS) == 5
        assert harness.checkpoints.load("shop-a", SyncClass.FULL, RecordCategory.PRODUCTS) is None
        assert harness.checkpoints.load("shop-a", SyncClass.FULL, RecordCategory.ORDERS).cursor == "page-2"

        resumed = await harness.orchestrator().run()

        assert orders.calls == [None, "page-2", "page-2"]
        assert resumed.total_items == 300
        assert harness.stored() == 300
        assert harness.stored(category=RecordCategory.PRODUCTS) == 5


class TestFetchFailures:
    """Page fetch failures under skip and abort policies"""

    @pytest.mark.asyncio
    async def test_abort_without_next_cursor(self, session_factory, connections, sleep):
        source = two_page_source({"page-2": [UpstreamError("HTTP 404")]})
        harness = Harness(session_factory, connections, source, sleep)

        result = await harness.orchestrator().run()

        assert result.success is False
        assert result.stage == SyncStage.ABORTED
        assert result.failed_page_count == 1
        checkpoint = harness.checkpoints.load("shop-a", SyncClass.FULL)
        assert checkpoint.cursor == "page-2"
        assert checkpoint.current_page == 1
        assert checkpoint.failed_pages[0].page == 2
        assert harness.stored() == 250

    @pytest.mark.asyncio
    async def test_skip_policy_moves_past_failed_page(self, session_factory, connections, sleep):
        pages = {
            None: Page(records=make_orders(10), next_cursor="page-2"),
            "page-3": Page(records=make_orders(10, start=21), next_cursor=None),
        }
        source = ScriptedSource(pages, {"page-2": [TransientNetworkError("HTTP 502", status_code=502, next_cursor="page-3")] * 3})
        harness = Harness(session_factory, connections, source, sleep)

        result = await harness.orchestrator().run()

        assert result.success is True
        assert result.stage == SyncStage.COMPLETED
        assert result.failed_page_count == 1
        assert result.pages_processed == 3
        assert result.total_items == 20
        assert source.calls == [None, "page-2", "page-2", "page-2", "page-3"]

    @pytest.mark.asyncio
    async def test_abort_policy_stops_even_with_next_cursor(self, session_factory, connections, sleep):
        source = two_page_source({"page-2": [UpstreamError("HTTP 403", next_cursor="page-3")]})
        config = SyncConfig(max_retries=2, fetch_failure_policy="abort")
        harness = Harness(session_factory, connections, source, sleep, config=config)

        result = await harness.orchestrator().run()

        assert result.stage == SyncStage.ABORTED
        assert harness.checkpoints.load("shop-a", SyncClass.FULL).cursor == "page-2"

    @pytest.mark.asyncio
    async def test_missing_connection_aborts_before_fetch(self, session_factory, connections, sleep):
        harness = Harness(session_factory, connections, two_page_source(), sleep)

        result = await harness.orchestrator(tenant_id="unknown-shop").run()

        assert result.success is False
        assert result.stage == SyncStage.ABORTED
        assert "No connection" in result.error
        assert harness.source.calls == []

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_aborted_result(self, session_factory, connections, sleep):
        source = two_page_source({"page-2": [RuntimeError("bug")]})
        harness = Harness(session_factory, connections, source, sleep)

        result = await harness.orchestrator().run()

        assert result.stage == SyncStage.ABORTED
        assert result.error == "bug"
        # Progress saved after page 1 is preserved
        assert harness.checkpoints.load("shop-a", SyncClass.FULL).cursor == "page-2"


class TestPartialFailures:
    """Batch failures are surfaced, not fatal"""

    @pytest.mark.asyncio
    async def test_failed_batch_lands_in_ledger_and_replays(self, session_factory, connections, sleep):
        harness = Harness(session_factory, connections, two_page_source(), sleep)
        repository = harness.records.repository(RecordCategory.ORDERS)
        # Fails all three attempts the retry budget allows during the run
        break_writes(repository, {"1260"}, times=3)

        result = await harness.orchestrator().run()

        assert result.success is True
        assert result.failed_batch_count == 1
        assert result.total_items == 275
        failed = harness.ledger.load("shop-a", SyncClass.FULL, RecordCategory.ORDERS)
        assert [(batch.page, batch.start_index, batch.end_index) for batch in failed] == [(2, 0, 25)]
        replay = await harness.ledger.replay("shop-a", SyncClass.FULL, RecordCategory.ORDERS)

        assert (replay.recovered, replay.still_failing) == (1, 0)
        assert harness.ledger.load("shop-a", SyncClass.FULL, RecordCategory.ORDERS) == []
        assert harness.stored() == 300

    @pytest.mark.asyncio
    async def test_invalid_records_are_skipped(self, session_factory, connections, sleep):
        source = ScriptedSource({None: Page(records=make_orders(5) + [{"no": "id"}], next_cursor=None)})
        harness = Harness(session_factory, connections, source, sleep)

        result = await harness.orchestrator().run()

        assert result.success is True
        assert result.total_items == 5
        assert result.failed_batch_count == 0


class TestCancellation:
    """Cooperative cancellation"""

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, session_factory, connections, sleep):
        harness = Harness(session_factory, connections, two_page_source(), sleep)
        token = CancellationToken()
        token.cancel()

        result = await harness.orchestrator(cancel_token=token).run()

        assert result.stage == SyncStage.CANCELLED
        assert result.error == "cancelled"
        assert harness.source.calls == []

    @pytest.mark.asyncio
    async def test_token_sleep_returns_early_when_cancelled(self):
        token = CancellationToken()
        token.cancel()
        assert await token.sleep(3600) is True

    @pytest.mark.asyncio
    async def test_token_sleep_completes_when_not_cancelled(self, sleep):
        token = CancellationToken()
        assert await token.sleep(5, sleep) is False
        assert sleep.calls == [5]
