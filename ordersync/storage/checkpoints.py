"""Checkpoint management for resumable syncs.

Failures here are logged and swallowed: losing a checkpoint degrades
resumability but never stops the sync loop.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

import pydantic
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from ordersync.core.db import upsert
from ordersync.core.logging import get_logger
from ordersync.models.checkpoints import SyncCheckpoint
from ordersync.schemas.sync import Checkpoint, RecordCategory, SyncClass, utcnow

log = get_logger("storage.checkpoints")


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class CheckpointStore:
    """Durable per (tenant, sync class, category) resume state with passive expiry.

    ``category`` defaults to orders so single-category callers keep the
    (tenant, sync class) shape.
    """

    def __init__(self, session_factory: sessionmaker, ttl: timedelta = timedelta(days=7)):
        self.session_factory = session_factory
        self.ttl = ttl

    @staticmethod
    def _key(tenant_id: str, sync_class: SyncClass, category: RecordCategory) -> Tuple[str, str, str]:
        return tenant_id, SyncClass(sync_class).value, RecordCategory(category).value

    def save(
        self,
        tenant_id: str,
        sync_class: SyncClass,
        checkpoint: Checkpoint,
        category: RecordCategory = RecordCategory.ORDERS,
    ) -> None:
        key = self._key(tenant_id, sync_class, category)
        label = "/".join(key)
        now = utcnow()
        state = checkpoint.model_copy(update={"last_updated": now, "expires_at": now + self.ttl})
        row = {
            "tenant_id": key[0],
            "sync_class": key[1],
            "category": key[2],
            "state": state.model_dump(mode="json"),
            "expires_at": state.expires_at,
            "updated_at": now,
        }
        try:
            with self.session_factory() as db:
                upsert(db, SyncCheckpoint, [row], ["tenant_id", "sync_class", "category"], ["state", "expires_at", "updated_at"])
                db.commit()
            log.info(f"Checkpoint saved: {label} page={checkpoint.current_page} items={checkpoint.total_items}")
        except SQLAlchemyError as exc:
            log.error(f"Failed to save checkpoint for {label}: {exc}")

    def load(
        self,
        tenant_id: str,
        sync_class: SyncClass,
        category: RecordCategory = RecordCategory.ORDERS,
    ) -> Optional[Checkpoint]:
        key = self._key(tenant_id, sync_class, category)
        label = "/".join(key)
        try:
            with self.session_factory() as db:
                row = db.get(SyncCheckpoint, key)
                if row is None:
                    return None
                if as_utc(row.expires_at) <= utcnow():
                    log.info(f"Checkpoint expired for {label}; starting fresh")
                    db.delete(row)
                    db.commit()
                    return None
                checkpoint = Checkpoint.model_validate(row.state)
        except SQLAlchemyError as exc:
            log.error(f"Failed to load checkpoint for {label}: {exc}")
            return None
        except pydantic.ValidationError as exc:
            log.error(f"Discarding unreadable checkpoint for {label}: {exc}")
            return None

        log.info(f"Checkpoint loaded: {label} resuming after page {checkpoint.current_page}")
        return checkpoint

    def clear(
        self,
        tenant_id: str,
        sync_class: SyncClass,
        category: RecordCategory = RecordCategory.ORDERS,
    ) -> None:
        tenant, cls_value, category_value = self._key(tenant_id, sync_class, category)
        label = f"{tenant}/{cls_value}/{category_value}"
        try:
            with self.session_factory() as db:
                db.execute(
                    delete(SyncCheckpoint).where(
                        SyncCheckpoint.tenant_id == tenant,
                        SyncCheckpoint.sync_class == cls_value,
                        SyncCheckpoint.category == category_value,
                    )
                )
                db.commit()
            log.info(f"Checkpoint cleared: {label}")
        except SQLAlchemyError as exc:
            log.error(f"Failed to clear checkpoint for {label}: {exc}")

    def list_for_tenant(self, tenant_id: str) -> List[Tuple[SyncClass, RecordCategory, Checkpoint]]:
        """Live (unexpired) checkpoints for a tenant, newest first."""
        now = utcnow()
        try:
            with self.session_factory() as db:
                rows = db.execute(
                    select(SyncCheckpoint)
                    .where(SyncCheckpoint.tenant_id == tenant_id)
                    .order_by(SyncCheckpoint.updated_at.desc())
                ).scalars().all()
                return [
                    (SyncClass(row.sync_class), RecordCategory(row.category), Checkpoint.model_validate(row.state))
                    for row in rows
                    if as_utc(row.expires_at) > now
                ]
        except (SQLAlchemyError, pydantic.ValidationError) as exc:
            log.error(f"Failed to list checkpoints for {tenant_id}: {exc}")
            return []

    def purge_expired(self) -> int:
        try:
            with self.session_factory() as db:
                result = db.execute(delete(SyncCheckpoint).where(SyncCheckpoint.expires_at <= utcnow()))
                db.commit()
                removed = result.rowcount or 0
        except SQLAlchemyError as exc:
            log.error(f"Failed to purge expired checkpoints: {exc}")
            return 0
        if removed:
            log.info(f"Purged {removed} expired checkpoints")
        return removed
