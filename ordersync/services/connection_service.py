"""Credential/connection lookup for tenants."""

from __future__ import annotations

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from ordersync.core.db import upsert
from ordersync.core.logging import get_logger
from ordersync.models.connections import SourceConnection
from ordersync.schemas.sync import Connection, SyncClass, utcnow

log = get_logger("connection_service")

_LAST_SYNC_COLUMN = {
    SyncClass.FULL: "last_full_sync_at",
    SyncClass.INCREMENTAL: "last_incremental_sync_at",
    SyncClass.MANUAL: "last_manual_sync_at",
}


class ConnectionService:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def get_connection(self, tenant_id: str) -> Optional[Connection]:
        """Active connection for a tenant, or None."""
        with self.session_factory() as db:
            row = db.get(SourceConnection, tenant_id)
            if row is None or row.status != "active":
                return None
            return Connection(tenant_id=row.tenant_id, endpoint=row.endpoint, access_token=row.access_token)

    def list_active(self) -> List[Connection]:
        try:
            with self.session_factory() as db:
                rows = db.execute(
                    select(SourceConnection).where(SourceConnection.status == "active").order_by(SourceConnection.tenant_id)
                ).scalars().all()
        except SQLAlchemyError as exc:
            log.error(f"Failed to list active connections: {exc}")
            return []
        return [Connection(tenant_id=row.tenant_id, endpoint=row.endpoint, access_token=row.access_token) for row in rows]

    def save_connection(self, tenant_id: str, endpoint: str, access_token: str, status: str = "active") -> None:
        with self.session_factory() as db:
            upsert(
                db,
                SourceConnection,
                [{"tenant_id": tenant_id, "endpoint": endpoint, "access_token": access_token, "status": status, "updated_at": utcnow()}],
                ["tenant_id"],
                ["endpoint", "access_token", "status", "updated_at"],
            )
            db.commit()

    def mark_synced(self, tenant_id: str, sync_class: SyncClass) -> None:
        """Stamp the last-sync timestamp for a completed run."""
        try:
            with self.session_factory() as db:
                row = db.get(SourceConnection, tenant_id)
                if row is None:
                    return
                setattr(row, _LAST_SYNC_COLUMN[SyncClass(sync_class)], utcnow())
                db.commit()
        except SQLAlchemyError as exc:
            log.error(f"Failed to update last sync time for {tenant_id}: {exc}")
