"""Sync engine value objects: checkpoints, pages, failed batches, status and results."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncClass(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"
    MANUAL = "manual"


class RecordCategory(str, Enum):
    ORDERS = "orders"
    PRODUCTS = "products"
    CUSTOMERS = "customers"


class SyncStage(str, Enum):
    INIT = "init"
    FETCHING = "fetching"
    WRITING = "writing"
    CHECKPOINTING = "checkpointing"
    WAITING = "waiting"
    COMPLETED = "completed"
    ABORTED = "aborted"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (SyncStage.COMPLETED, SyncStage.ABORTED, SyncStage.CANCELLED)


class Connection(BaseModel):
    """Endpoint + credentials for one tenant's upstream account."""

    tenant_id: str
    endpoint: str
    access_token: str


class PageQuery(BaseModel):
    """Parameters for the first page of a run; later pages follow the cursor."""

    category: RecordCategory = RecordCategory.ORDERS
    page_size: int = 250
    created_at_min: Optional[datetime] = None
    updated_at_min: Optional[datetime] = None


class Page(BaseModel):
    records: List[Dict[str, Any]] = Field(default_factory=list)
    next_cursor: Optional[str] = None

    @property
    def is_last(self) -> bool:
        return self.next_cursor is None


class FailedPage(BaseModel):
    page: int
    cursor: Optional[str] = None
    error: str
    timestamp: datetime = Field(default_factory=utcnow)


class Checkpoint(BaseModel):
    """Resume position. A non-null ``cursor`` always names the next page to fetch."""

    current_page: int = 0
    cursor: Optional[str] = None
    total_items: int = 0
    failed_pages: List[FailedPage] = Field(default_factory=list)
    last_updated: Optional[datetime] = None
    expires_at: Optional[datetime] = None


class FailedBatch(BaseModel):
    """A contiguous slice of one page's records that could not be written.

    ``items`` holds the raw source payloads so a replay can rebuild rows.
    """

    # start/end offsets are relative to this page
    page: Optional[int] = None
    start_index: int
    end_index: int
    items: List[Dict[str, Any]]
    error: str
    timestamp: datetime = Field(default_factory=utcnow)


class SyncStatus(BaseModel):
    tenant_id: str
    sync_class: Optional[SyncClass] = None
    category: RecordCategory = RecordCategory.ORDERS
    stage: SyncStage
    items_so_far: int = 0
    current_page: int = 0
    message: str = ""
    updated_at: datetime = Field(default_factory=utcnow)


class SyncResult(BaseModel):
    success: bool
    tenant_id: str
    sync_class: SyncClass
    category: RecordCategory = RecordCategory.ORDERS
    stage: SyncStage
    total_items: int = 0
    pages_processed: int = 0
    failed_page_count: int = 0
    failed_batch_count: int = 0
    error: Optional[str] = None


class ReplayResult(BaseModel):
    success: bool
    recovered: int = 0
    still_failing: int = 0
    error: Optional[str] = None
