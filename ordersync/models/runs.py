"""Run history for /sync/runs and post-mortems."""

import uuid

from sqlalchemy import DateTime, Integer, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from ordersync.models.base import Base


class SyncRun(Base):
    __tablename__ = "sync_runs"

    run_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    sync_class: Mapped[str] = mapped_column(String(20), nullable=False)

    category: Mapped[str] = mapped_column(String(20), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,  # running | completed | aborted | cancelled | failed
    )

    items_synced: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    pages_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    failed_pages: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    failed_batches: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    error_message: Mapped[str | None] = mapped_column(String, nullable=True)

    started_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    ended_at: Mapped[DateTime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
