"""Splits a page's rows into store-sized batches and writes them with retries."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Tuple

from ordersync.core.errors import SyncError
from ordersync.core.logging import get_logger
from ordersync.core.retry import RetryPolicy, Sleep
from ordersync.schemas.sync import FailedBatch, RecordCategory
from ordersync.storage.records import RecordStore

log = get_logger("batch_writer")


class BatchWriter:
    """Writes rows in contiguous batches; failed batches are returned, not retried inline."""

    def __init__(
        self,
        records: RecordStore,
        retry: RetryPolicy,
        inter_batch_delay: float = 0.1,
        max_batch_size: int = 25,
        sleep: Optional[Sleep] = None,
    ):
        self.records = records
        self.retry = retry
        self.inter_batch_delay = inter_batch_delay
        self.max_batch_size = max_batch_size
        self.sleep: Sleep = sleep or asyncio.sleep

    @staticmethod
    def split(rows: List[Dict[str, Any]], batch_size: int) -> List[Tuple[int, List[Dict[str, Any]]]]:
        """Deterministic contiguous slices as (start_index, rows)."""
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        return [(start, rows[start : start + batch_size]) for start in range(0, len(rows), batch_size)]

    async def write_batch(self, category: RecordCategory, rows: List[Dict[str, Any]], description: str = "batch write") -> int:
        """Upsert one batch through the retry policy. Raises the last error on exhaustion."""
        repository = self.records.repository(category)
        return await self.retry.execute(
            lambda: asyncio.to_thread(repository.upsert_many, rows),
            description=description,
        )

    async def write_all(
        self,
        category: RecordCategory,
        rows: List[Dict[str, Any]],
        batch_size: int,
        page: Optional[int] = None,
    ) -> List[FailedBatch]:
        size = min(batch_size, self.max_batch_size)
        failed: List[FailedBatch] = []
        where = f" of page {page}" if page is not None else ""

        for start, batch in self.split(rows, size):
            end = start + len(batch)
            try:
                await self.write_batch(category, batch, description=f"{category.value} batch {start}-{end}{where}")
            except SyncError as exc:
                log.error(f"Batch write failed for items {start}-{end}{where}: {exc}")
                failed.append(
                    FailedBatch(
                        page=page,
                        start_index=start,
                        end_index=end,
                        items=[row["payload"] for row in batch],
                        error=str(exc),
                    )
                )
                continue

            # Small delay between successful batches
            await self.sleep(self.inter_batch_delay)

        if failed:
            log.warning(f"{len(failed)} of {len(self.split(rows, size))} {category.value} batches failed")
        return failed
