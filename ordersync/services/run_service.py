"""Run history: one SyncRun row per orchestrator run."""

from __future__ import annotations

import uuid
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from ordersync.core.logging import get_logger
from ordersync.models.runs import SyncRun
from ordersync.schemas.sync import RecordCategory, SyncClass, SyncResult, SyncStage, utcnow

log = get_logger("run_service")

_STATUS_BY_STAGE = {
    SyncStage.COMPLETED: "completed",
    SyncStage.ABORTED: "aborted",
    SyncStage.CANCELLED: "cancelled",
}


class RunService:
    """Bookkeeping only; a failure here is logged and never affects the sync."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def start_run(self, tenant_id: str, sync_class: SyncClass, category: RecordCategory) -> Optional[uuid.UUID]:
        run = SyncRun(
            tenant_id=tenant_id,
            sync_class=SyncClass(sync_class).value,
            category=RecordCategory(category).value,
            status="running",
            started_at=utcnow(),
        )
        try:
            with self.session_factory() as db:
                db.add(run)
                db.commit()
                return run.run_id
        except SQLAlchemyError as exc:
            log.error(f"Failed to record run start for {tenant_id}: {exc}")
            return None

    def finish_run(self, run_id: Optional[uuid.UUID], result: SyncResult) -> None:
        if run_id is None:
            return
        try:
            with self.session_factory() as db:
                run = db.get(SyncRun, run_id)
                if run is None:
                    return
                run.status = _STATUS_BY_STAGE.get(result.stage, "failed")
                run.items_synced = result.total_items
                run.pages_processed = result.pages_processed
                run.failed_pages = result.failed_page_count
                run.failed_batches = result.failed_batch_count
                run.error_message = result.error
                run.ended_at = utcnow()
                db.commit()
        except SQLAlchemyError as exc:
            log.error(f"Failed to record run result {run_id}: {exc}")

    def get_runs(
        self,
        tenant_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 20,
    ) -> List[SyncRun]:
        """Recent runs with optional filtering."""
        stmt = select(SyncRun)

        if tenant_id:
            stmt = stmt.where(SyncRun.tenant_id == tenant_id)
        if status:
            stmt = stmt.where(SyncRun.status == status)

        stmt = stmt.order_by(SyncRun.started_at.desc()).limit(limit)
        with self.session_factory() as db:
            return list(db.execute(stmt).scalars().all())
