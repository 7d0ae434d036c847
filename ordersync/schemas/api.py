from datetime import datetime
from typing import Optional
from pydantic import BaseModel

from ordersync.schemas.sync import RecordCategory, SyncClass, SyncStage


class HealthResponse(BaseModel):
    database: str
    last_sync_status: str | None
    active_syncs: int = 0


class SyncStatusResponse(BaseModel):
    tenant_id: str
    sync_class: Optional[SyncClass] = None
    category: RecordCategory
    stage: SyncStage
    items_so_far: int
    current_page: int
    message: str
    updated_at: datetime
    running: bool = False


class SyncTriggerResponse(BaseModel):
    tenant_id: str
    sync_class: SyncClass
    category: RecordCategory
    status: str  # queued | already_running
    message: str


class ReplayResponse(BaseModel):
    tenant_id: str
    sync_class: SyncClass
    category: RecordCategory
    success: bool
    recovered: int
    still_failing: int
    error: str | None = None


class SyncRunOut(BaseModel):
    run_id: str
    tenant_id: str
    sync_class: str
    category: str
    status: str
    items_synced: int
    pages_processed: int
    failed_pages: int
    failed_batches: int
    error_message: str | None = None
    started_at: datetime
    ended_at: datetime | None

    class Config:
        from_attributes = True
