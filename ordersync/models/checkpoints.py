"""Powers resumable syncs: one row per (tenant, sync class, category)."""

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from ordersync.models.base import Base, JSONType


class SyncCheckpoint(Base):
    __tablename__ = "sync_checkpoints"

    tenant_id: Mapped[str] = mapped_column(String(100), primary_key=True)

    sync_class: Mapped[str] = mapped_column(String(20), primary_key=True)  # full | incremental | manual

    category: Mapped[str] = mapped_column(String(20), primary_key=True)  # orders | products | customers

    # Serialized ordersync.schemas.sync.Checkpoint
    state: Mapped[dict] = mapped_column(JSONType, nullable=False)

    expires_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )

    updated_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )
