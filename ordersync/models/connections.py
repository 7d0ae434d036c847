"""Per-tenant upstream connection (endpoint + credentials)."""

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from ordersync.models.base import Base


class SourceConnection(Base):
    __tablename__ = "source_connections"

    tenant_id: Mapped[str] = mapped_column(String(100), primary_key=True)

    endpoint: Mapped[str] = mapped_column(String(255), nullable=False, comment="Shop domain or base URL of the source API")

    access_token: Mapped[str] = mapped_column(String(255), nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active", index=True)

    last_full_sync_at: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    last_incremental_sync_at: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    last_manual_sync_at: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    updated_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )
