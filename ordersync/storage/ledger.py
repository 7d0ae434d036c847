"""Failed-batch ledger: durable record of batches that exhausted retries."""

from __future__ import annotations

from typing import TYPE_CHECKING, List

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from ordersync.core.db import upsert
from ordersync.core.errors import SyncError
from ordersync.core.logging import get_logger
from ordersync.models.failed_batches import FailedBatchEntry
from ordersync.schemas.sync import FailedBatch, RecordCategory, ReplayResult, SyncClass, utcnow
from ordersync.storage.records import RecordStore

if TYPE_CHECKING:
    from ordersync.services.batch_writer import BatchWriter

log = get_logger("storage.ledger")


class FailedBatchLedger:
    """One entry per (tenant, sync class, category) holding a list of failed batches.

    ``record`` appends, ``replay`` re-attempts every batch once through the
    writer's retry policy and rewrites the entry with the batches that still
    fail (or removes it when none remain).
    """

    def __init__(self, session_factory: sessionmaker, records: RecordStore, writer: BatchWriter):
        self.session_factory = session_factory
        self.records = records
        self.writer = writer

    @staticmethod
    def _key(tenant_id: str, sync_class: SyncClass, category: RecordCategory) -> tuple:
        return (tenant_id, SyncClass(sync_class).value, RecordCategory(category).value)

    def load(self, tenant_id: str, sync_class: SyncClass, category: RecordCategory) -> List[FailedBatch]:
        """Raises ``SQLAlchemyError`` when the store is unreachable."""
        with self.session_factory() as db:
            entry = db.get(FailedBatchEntry, self._key(tenant_id, sync_class, category))
            if entry is None:
                return []
            return [FailedBatch.model_validate(item) for item in entry.batches or []]

    def _store(self, tenant_id: str, sync_class: SyncClass, category: RecordCategory, batches: List[FailedBatch]) -> None:
        tenant, cls_value, category_value = self._key(tenant_id, sync_class, category)
        with self.session_factory() as db:
            if batches:
                row = {
                    "tenant_id": tenant,
                    "sync_class": cls_value,
                    "category": category_value,
                    "batches": [batch.model_dump(mode="json") for batch in batches],
                    "updated_at": utcnow(),
                }
                upsert(db, FailedBatchEntry, [row], ["tenant_id", "sync_class", "category"], ["batches", "updated_at"])
            else:
                db.execute(
                    delete(FailedBatchEntry).where(
                        FailedBatchEntry.tenant_id == tenant,
                        FailedBatchEntry.sync_class == cls_value,
                        FailedBatchEntry.category == category_value,
                    )
                )
            db.commit()

    def record(
        self,
        tenant_id: str,
        sync_class: SyncClass,
        category: RecordCategory,
        failed_batches: List[FailedBatch],
    ) -> None:
        if not failed_batches:
            return
        try:
            existing = self.load(tenant_id, sync_class, category)
            self._store(tenant_id, sync_class, category, existing + list(failed_batches))
            log.info(f"Saved {len(failed_batches)} failed batches for later replay ({tenant_id}/{SyncClass(sync_class).value}/{RecordCategory(category).value})")
        except SQLAlchemyError as exc:
            log.error(f"Failed to record {len(failed_batches)} failed batches for {tenant_id}: {exc}")

    async def replay(self, tenant_id: str, sync_class: SyncClass, category: RecordCategory) -> ReplayResult:
        category = RecordCategory(category)
        try:
            batches = self.load(tenant_id, sync_class, category)
        except SQLAlchemyError as exc:
            log.error(f"Failed to load failed batches for {tenant_id}: {exc}")
            return ReplayResult(success=False, error=str(exc))

        if not batches:
            log.info(f"No failed batches to replay for {tenant_id}/{SyncClass(sync_class).value}/{category.value}")
            return ReplayResult(success=True)

        log.info(f"Replaying {len(batches)} failed batches for {tenant_id}")
        repository = self.records.repository(category)
        synced_at = utcnow()
        recovered = 0
        still_failing: List[FailedBatch] = []

        for batch in batches:
            rows = repository.build_rows(tenant_id, batch.items, synced_at)
            label = f"page {batch.page} items {batch.start_index}-{batch.end_index}"
            try:
                await self.writer.write_batch(category, rows, description=f"replay {category.value} {label}")
            except SyncError as exc:
                log.error(f"Replay failed for {label}: {exc}")
                still_failing.append(batch.model_copy(update={"error": str(exc), "timestamp": utcnow()}))
                continue
            recovered += 1

        try:
            self._store(tenant_id, sync_class, category, still_failing)
        except SQLAlchemyError as exc:
            log.error(f"Failed to rewrite ledger for {tenant_id}: {exc}")
            return ReplayResult(success=False, recovered=recovered, still_failing=len(still_failing), error=str(exc))

        log.info(f"Replay complete: {recovered}/{len(batches)} batches recovered")
        return ReplayResult(success=True, recovered=recovered, still_failing=len(still_failing))
