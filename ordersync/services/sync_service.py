"""Sync service: trigger surface, status query and failed-batch replay.

Wires the engine components once and builds a fresh ``SyncOrchestrator`` per
run. Runs for different tenants execute concurrently up to
``max_concurrent_tenants``; a second run for a (tenant, sync class, category)
that is already in flight is refused.
"""

from __future__ import annotations

import asyncio
from typing import Dict, List, Optional, Set, Tuple

from sqlalchemy.orm import sessionmaker

from ordersync.core.config import SyncConfig
from ordersync.core.logging import get_logger
from ordersync.core.retry import RetryPolicy, Sleep
from ordersync.ingestion.base import BasePageSource
from ordersync.ingestion.fetcher import PageFetcher
from ordersync.models.runs import SyncRun
from ordersync.schemas.sync import (
    RecordCategory,
    ReplayResult,
    SyncClass,
    SyncResult,
    SyncStage,
    SyncStatus,
)
from ordersync.services.batch_writer import BatchWriter
from ordersync.services.connection_service import ConnectionService
from ordersync.services.orchestrator import CancellationToken, SyncOrchestrator
from ordersync.services.run_service import RunService
from ordersync.services.status_feed import SyncStatusFeed
from ordersync.storage.checkpoints import CheckpointStore
from ordersync.storage.ledger import FailedBatchLedger
from ordersync.storage.records import RecordStore

log = get_logger("sync_service")

RunKey = Tuple[str, SyncClass, RecordCategory]


class SyncService:
    def __init__(
        self,
        session_factory: sessionmaker,
        source: BasePageSource,
        config: SyncConfig,
        feed: Optional[SyncStatusFeed] = None,
        sleep: Optional[Sleep] = None,
    ):
        self.config = config
        self.sleep: Sleep = sleep or asyncio.sleep
        self.retry = RetryPolicy.from_config(config, sleep=self.sleep)
        self.records = RecordStore(session_factory)
        self.checkpoints = CheckpointStore(session_factory, ttl=config.checkpoint_ttl)
        self.writer = BatchWriter(
            self.records,
            self.retry,
            inter_batch_delay=config.inter_batch_delay,
            max_batch_size=config.batch_size,
            sleep=self.sleep,
        )
        self.ledger = FailedBatchLedger(session_factory, self.records, self.writer)
        self.fetcher = PageFetcher(source, self.retry, timeout=config.fetch_timeout)
        self.connections = ConnectionService(session_factory)
        self.runs = RunService(session_factory)
        self.feed = feed or SyncStatusFeed()

        self._active: Dict[RunKey, SyncOrchestrator] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._semaphore = asyncio.Semaphore(max(config.max_concurrent_tenants, 1))

    # -------------------------------------------------------------------------
    # Trigger surface
    # -------------------------------------------------------------------------
    async def run_full(self, tenant_id: str) -> SyncResult:
        return await self.run(tenant_id, SyncClass.FULL)

    async def run_incremental(self, tenant_id: str) -> SyncResult:
        return await self.run(tenant_id, SyncClass.INCREMENTAL)

    async def run_manual(self, tenant_id: str) -> SyncResult:
        return await self.run(tenant_id, SyncClass.MANUAL)

    async def run(
        self,
        tenant_id: str,
        sync_class: SyncClass,
        category: RecordCategory = RecordCategory.ORDERS,
    ) -> SyncResult:
        sync_class = SyncClass(sync_class)
        category = RecordCategory(category)
        key: RunKey = (tenant_id, sync_class, category)

        if key in self._active:
            log.warning(f"{sync_class.value} {category.value} sync already running for {tenant_id}")
            return SyncResult(
                success=False,
                tenant_id=tenant_id,
                sync_class=sync_class,
                category=category,
                stage=self._active[key].stage,
                error="Sync already in progress",
            )

        orchestrator = self._build_orchestrator(tenant_id, sync_class, category)
        self._active[key] = orchestrator
        try:
            async with self._semaphore:
                run_id = self.runs.start_run(tenant_id, sync_class, category)
                result = await orchestrator.run()
                self.runs.finish_run(run_id, result)
        finally:
            self._active.pop(key, None)

        if result.stage == SyncStage.COMPLETED:
            self.connections.mark_synced(tenant_id, sync_class)
            if sync_class == SyncClass.MANUAL and result.failed_batch_count:
                log.info(f"Retrying {result.failed_batch_count} failed batches after manual sync")
                await self.ledger.replay(tenant_id, sync_class, category)

        return result

    def start(
        self,
        tenant_id: str,
        sync_class: SyncClass,
        category: RecordCategory = RecordCategory.ORDERS,
    ) -> bool:
        """Launch a run in the background. False if that run is already in flight."""
        key: RunKey = (tenant_id, SyncClass(sync_class), RecordCategory(category))
        if key in self._active:
            return False
        task = asyncio.create_task(self.run(*key))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def replay_failed_batches(
        self,
        tenant_id: str,
        sync_class: SyncClass,
        category: RecordCategory = RecordCategory.ORDERS,
    ) -> ReplayResult:
        return await self.ledger.replay(tenant_id, SyncClass(sync_class), RecordCategory(category))

    # -------------------------------------------------------------------------
    # Status query
    # -------------------------------------------------------------------------
    def get_status(self, tenant_id: str) -> Optional[SyncStatus]:
        """Live snapshot, or a coarse one rebuilt from the newest checkpoint."""
        status = self.feed.get(tenant_id)
        if status is not None:
            return status

        checkpoints = self.checkpoints.list_for_tenant(tenant_id)
        if not checkpoints:
            return None
        sync_class, category, checkpoint = checkpoints[0]
        return SyncStatus(
            tenant_id=tenant_id,
            sync_class=sync_class,
            category=category,
            stage=SyncStage.INIT,
            items_so_far=checkpoint.total_items,
            current_page=checkpoint.current_page,
            message=f"Interrupted {sync_class.value} {category.value} sync can resume from page {checkpoint.current_page + 1}",
            updated_at=checkpoint.last_updated or checkpoint.expires_at,
        )

    def list_statuses(self) -> List[SyncStatus]:
        """Live snapshots for every tenant that reported progress in this process."""
        return sorted(self.feed.snapshot().values(), key=lambda status: status.tenant_id)

    def list_runs(self, tenant_id: Optional[str] = None, status: Optional[str] = None, limit: int = 20) -> List[SyncRun]:
        return self.runs.get_runs(tenant_id=tenant_id, status=status, limit=limit)

    @property
    def active_count(self) -> int:
        return len(self._active)

    def is_running(self, tenant_id: str, sync_class: SyncClass, category: RecordCategory = RecordCategory.ORDERS) -> bool:
        return (tenant_id, SyncClass(sync_class), RecordCategory(category)) in self._active

    # -------------------------------------------------------------------------
    # Cancellation
    # -------------------------------------------------------------------------
    def cancel(self, tenant_id: str) -> int:
        """Signal every in-flight run of a tenant to checkpoint and stop."""
        cancelled = 0
        for (tenant, _, _), orchestrator in list(self._active.items()):
            if tenant == tenant_id:
                orchestrator.cancel()
                cancelled += 1
        return cancelled

    def cancel_all(self) -> None:
        for orchestrator in list(self._active.values()):
            orchestrator.cancel()

    async def shutdown(self) -> None:
        """Cancel in-flight runs and wait for them to checkpoint and exit."""
        self.cancel_all()
        if self._tasks:
            log.info(f"Waiting for {len(self._tasks)} background syncs to stop...")
            await asyncio.gather(*self._tasks, return_exceptions=True)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------
    def _build_orchestrator(self, tenant_id: str, sync_class: SyncClass, category: RecordCategory) -> SyncOrchestrator:
        return SyncOrchestrator(
            tenant_id=tenant_id,
            sync_class=sync_class,
            connections=self.connections,
            fetcher=self.fetcher,
            writer=self.writer,
            records=self.records,
            checkpoints=self.checkpoints,
            ledger=self.ledger,
            feed=self.feed,
            config=self.config,
            category=category,
            cancel_token=CancellationToken(),
            sleep=self.sleep,
        )
