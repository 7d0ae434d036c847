"""Resumable fetch -> write -> checkpoint -> wait loop for one tenant and sync class.

State machine::

    INIT -> FETCHING -> WRITING -> CHECKPOINTING -> WAITING -> FETCHING ...
    terminal: COMPLETED (no next cursor), ABORTED, CANCELLED

The checkpoint for a page is persisted after that page's writes were
attempted and before the wait, so a crash during the wait resumes at the next
page without repeating or skipping one.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Callable, List, Optional

from ordersync.core.config import SyncConfig
from ordersync.core.errors import FatalConfigError, PageFetchError
from ordersync.core.logging import get_logger
from ordersync.core.retry import Sleep
from ordersync.ingestion.fetcher import PageFetcher
from ordersync.schemas.sync import (
    Checkpoint,
    Connection,
    FailedPage,
    PageQuery,
    RecordCategory,
    SyncClass,
    SyncResult,
    SyncStage,
    SyncStatus,
    utcnow,
)
from ordersync.services.batch_writer import BatchWriter
from ordersync.services.status_feed import SyncStatusFeed
from ordersync.storage.checkpoints import CheckpointStore
from ordersync.storage.ledger import FailedBatchLedger
from ordersync.storage.records import RecordStore


class CancellationToken:
    """Cooperative stop signal: the loop finishes the in-flight step, checkpoints, then exits."""

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def sleep(self, seconds: float, sleep: Sleep = asyncio.sleep) -> bool:
        """Sleep unless cancelled first. Returns True when cancellation interrupted the wait."""
        if self.cancelled:
            return True
        sleeper = asyncio.ensure_future(sleep(seconds))
        waiter = asyncio.ensure_future(self._event.wait())
        _, pending = await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        return self.cancelled


class SyncOrchestrator:
    """Drives one run. Owns the run's progress state and its checkpoint lifecycle."""

    def __init__(
        self,
        tenant_id: str,
        sync_class: SyncClass,
        connections,
        fetcher: PageFetcher,
        writer: BatchWriter,
        records: RecordStore,
        checkpoints: CheckpointStore,
        ledger: FailedBatchLedger,
        feed: SyncStatusFeed,
        config: SyncConfig,
        category: RecordCategory = RecordCategory.ORDERS,
        cancel_token: Optional[CancellationToken] = None,
        sleep: Optional[Sleep] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.tenant_id = tenant_id
        self.sync_class = SyncClass(sync_class)
        self.category = RecordCategory(category)
        self.connections = connections
        self.fetcher = fetcher
        self.writer = writer
        self.records = records
        self.checkpoints = checkpoints
        self.ledger = ledger
        self.feed = feed
        self.config = config
        self.cancel_token = cancel_token or CancellationToken()
        self.sleep: Sleep = sleep or asyncio.sleep
        self.clock = clock
        self.log = get_logger("orchestrator", tenant=tenant_id, sync_class=self.sync_class.value, category=self.category.value)

        self.stage = SyncStage.INIT
        self.page_index = 0
        self.cursor: Optional[str] = None
        self.total_items = 0
        self.failed_pages: List[FailedPage] = []
        self.failed_batch_count = 0

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------
    def cancel(self) -> None:
        self.cancel_token.cancel()

    async def run(self) -> SyncResult:
        """Run to a terminal stage. Never raises; failures come back as a result."""
        try:
            return await self._run()
        except FatalConfigError as exc:
            self.log.error(f"Sync aborted: {exc}")
            self._transition(SyncStage.ABORTED, str(exc))
            return self._result(False, error=str(exc))
        except Exception as exc:  # noqa: BLE001
            self.log.exception(f"Unexpected sync failure: {exc}")
            self._transition(SyncStage.ABORTED, f"Sync failed: {exc}")
            return self._result(False, error=str(exc))

    def build_query(self) -> PageQuery:
        """First-page window per sync class."""
        now = self.clock()
        query = PageQuery(category=self.category, page_size=self.config.page_size)
        if self.sync_class == SyncClass.FULL:
            query.created_at_min = now - self.config.full_lookback
        elif self.sync_class == SyncClass.INCREMENTAL:
            query.updated_at_min = now - self.config.incremental_lookback
        return query

    # -------------------------------------------------------------------------
    # State machine
    # -------------------------------------------------------------------------
    async def _run(self) -> SyncResult:
        self.log.info("Starting sync")
        self._transition(SyncStage.INIT, "Starting sync...")

        connection: Optional[Connection] = self.connections.get_connection(self.tenant_id)
        if connection is None:
            raise FatalConfigError(f"No connection found for tenant {self.tenant_id}")

        self._resume(self.checkpoints.load(self.tenant_id, self.sync_class, self.category))
        query = self.build_query()
        synced_at = self.clock()

        while True:
            if self.cancel_token.cancelled:
                return self._cancelled()

            page_number = self.page_index + 1
            self._transition(SyncStage.FETCHING, f"Fetching page {page_number}...")

            try:
                page = await self.fetcher.fetch(self.cursor, connection, query)
            except PageFetchError as exc:
                if not self._skip_failed_page(page_number, exc):
                    return self._aborted(page_number, exc)
            else:
                self._forget_failed_page(self.cursor)
                self.page_index = page_number
                await self._write(page.records, synced_at)
                self.cursor = page.next_cursor

            if self.cursor is None:
                return self._completed()

            self._transition(SyncStage.CHECKPOINTING, f"Saving progress after page {self.page_index}...")
            self._save_checkpoint()

            if self.cancel_token.cancelled:
                return self._cancelled()

            interval = self.config.wait_for(self.sync_class)
            self._transition(
                SyncStage.WAITING,
                f"Waiting {interval:g}s before fetching page {self.page_index + 1}... ({self.total_items} items saved so far)",
            )
            if await self.cancel_token.sleep(interval, self.sleep):
                return self._cancelled()

    def _resume(self, checkpoint: Optional[Checkpoint]) -> None:
        if checkpoint is None:
            self.log.info("No checkpoint; starting at page 1")
            return
        self.page_index = checkpoint.current_page
        self.cursor = checkpoint.cursor
        self.total_items = checkpoint.total_items
        self.failed_pages = list(checkpoint.failed_pages)
        self.log.info(f"Resuming at page {self.page_index + 1} ({self.total_items} items already saved)")

    async def _write(self, raw_records: list, synced_at: datetime) -> None:
        self._transition(SyncStage.WRITING, f"Saving {len(raw_records)} {self.category.value} from page {self.page_index}...")
        rows = self.records.repository(self.category).build_rows(self.tenant_id, raw_records, synced_at)
        if not rows:
            return

        failed = await self.writer.write_all(self.category, rows, self.config.batch_size, page=self.page_index)
        if failed:
            self.ledger.record(self.tenant_id, self.sync_class, self.category, failed)
            self.failed_batch_count += len(failed)

        written = len(rows) - sum(len(batch.items) for batch in failed)
        self.total_items += written
        self.log.info(f"Page {self.page_index}: stored {written}/{len(rows)} {self.category.value} (total {self.total_items})")

    def _skip_failed_page(self, page_number: int, exc: PageFetchError) -> bool:
        """Record the failed page; move past it when policy and response allow."""
        self._forget_failed_page(self.cursor)
        self.failed_pages.append(FailedPage(page=page_number, cursor=self.cursor, error=str(exc)))
        if self.config.fetch_failure_policy != "skip" or not exc.next_cursor:
            return False
        self.log.warning(f"Skipping failed page {page_number}, continuing to next page")
        self.page_index = page_number
        self.cursor = exc.next_cursor
        return True

    def _forget_failed_page(self, cursor: Optional[str]) -> None:
        """A page fetched again (on resume or retry) keeps at most its latest outcome."""
        self.failed_pages = [page for page in self.failed_pages if page.cursor != cursor]

    # -------------------------------------------------------------------------
    # Terminal transitions
    # -------------------------------------------------------------------------
    def _completed(self) -> SyncResult:
        self.checkpoints.clear(self.tenant_id, self.sync_class, self.category)
        message = f"Synced {self.total_items} {self.category.value} across {self.page_index} pages"
        if self.failed_pages or self.failed_batch_count:
            message += f" ({len(self.failed_pages)} failed pages, {self.failed_batch_count} failed batches)"
        self._transition(SyncStage.COMPLETED, message)
        self.log.info(f"Sync completed: {message}")
        for failed_page in self.failed_pages:
            self.log.warning(f"  - Page {failed_page.page}: {failed_page.error}")
        return self._result(True)

    def _aborted(self, page_number: int, exc: PageFetchError) -> SyncResult:
        # Cursor still names the page that failed, so a later run retries it.
        self._save_checkpoint()
        message = f"Page {page_number} failed with no next page to continue from: {exc}"
        self._transition(SyncStage.ABORTED, message)
        self.log.error(f"Sync aborted: {message}")
        return self._result(False, error=str(exc))

    def _cancelled(self) -> SyncResult:
        message = f"Cancelled after page {self.page_index}; checkpoint kept for resume"
        self._transition(SyncStage.CANCELLED, message)
        self.log.warning(f"Sync cancelled: {message}")
        return self._result(False, error="cancelled")

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------
    def _save_checkpoint(self) -> None:
        self.checkpoints.save(
            self.tenant_id,
            self.sync_class,
            Checkpoint(
                current_page=self.page_index,
                cursor=self.cursor,
                total_items=self.total_items,
                failed_pages=self.failed_pages,
            ),
            self.category,
        )

    def _transition(self, stage: SyncStage, message: str) -> None:
        self.stage = stage
        self.feed.publish(
            SyncStatus(
                tenant_id=self.tenant_id,
                sync_class=self.sync_class,
                category=self.category,
                stage=stage,
                items_so_far=self.total_items,
                current_page=self.page_index,
                message=message,
            )
        )

    def _result(self, success: bool, error: Optional[str] = None) -> SyncResult:
        return SyncResult(
            success=success,
            tenant_id=self.tenant_id,
            sync_class=self.sync_class,
            category=self.category,
            stage=self.stage,
            total_items=self.total_items,
            pages_processed=self.page_index,
            failed_page_count=len(self.failed_pages),
            failed_batch_count=self.failed_batch_count,
            error=error,
        )
