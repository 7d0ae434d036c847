"""Write batches that exhausted their retries, kept for replay."""

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from ordersync.models.base import Base, JSONType


class FailedBatchEntry(Base):
    __tablename__ = "failed_batches"

    tenant_id: Mapped[str] = mapped_column(String(100), primary_key=True)

    sync_class: Mapped[str] = mapped_column(String(20), primary_key=True)

    category: Mapped[str] = mapped_column(String(20), primary_key=True)  # orders | products | customers

    # List of serialized ordersync.schemas.sync.FailedBatch
    batches: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)

    created_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    updated_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )
