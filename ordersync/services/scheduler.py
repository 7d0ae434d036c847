"""Recurring multi-tenant sync trigger."""

from __future__ import annotations

import asyncio
from typing import Dict, Optional

from ordersync.core.logging import get_logger
from ordersync.core.retry import Sleep
from ordersync.schemas.sync import SyncClass, SyncResult

log = get_logger("scheduler")


class SyncScheduler:
    """Runs one sync class for every active tenant at a fixed interval.

    Tenant starts are staggered; the service's semaphore bounds how many run at once.
    """

    def __init__(
        self,
        service,
        interval: float = 24 * 60 * 60,
        stagger: float = 1.0,
        sync_class: SyncClass = SyncClass.INCREMENTAL,
        sleep: Optional[Sleep] = None,
    ):
        self.service = service
        self.interval = interval
        self.stagger = stagger
        self.sync_class = SyncClass(sync_class)
        self.sleep: Sleep = sleep or asyncio.sleep
        self._task: Optional[asyncio.Task] = None

    async def run_once(self, sync_class: Optional[SyncClass] = None) -> Dict[str, SyncResult]:
        """Sync every active tenant once and return results keyed by tenant."""
        sync_class = SyncClass(sync_class or self.sync_class)
        connections = self.service.connections.list_active()
        if not connections:
            log.info("No active connections to sync")
            return {}

        log.info(f"Starting scheduled {sync_class.value} sync for {len(connections)} tenants")

        async def _run(position: int, tenant_id: str) -> SyncResult:
            if position and self.stagger:
                await self.sleep(position * self.stagger)
            return await self.service.run(tenant_id, sync_class)

        tenants = [connection.tenant_id for connection in connections]
        outcomes = await asyncio.gather(
            *(_run(position, tenant) for position, tenant in enumerate(tenants)),
            return_exceptions=True,
        )

        results: Dict[str, SyncResult] = {}
        for tenant_id, outcome in zip(tenants, outcomes):
            if isinstance(outcome, BaseException):
                log.error(f"Scheduled sync for {tenant_id} raised: {outcome}")
                continue
            results[tenant_id] = outcome
            if outcome.success:
                log.info(f"{tenant_id}: synced {outcome.total_items} items over {outcome.pages_processed} pages")
            else:
                log.error(f"{tenant_id}: {outcome.stage.value} - {outcome.error or 'unknown error'}")

        succeeded = sum(1 for result in results.values() if result.success)
        log.info(f"Scheduled {sync_class.value} sync finished: {succeeded}/{len(tenants)} tenants succeeded")
        return results

    async def _loop(self) -> None:
        log.info(f"Scheduled sync task started (interval: {self.interval}s)")

        # Run immediately on startup
        await self.run_once()

        while True:
            try:
                await self.sleep(self.interval)
                await self.run_once()
            except asyncio.CancelledError:
                log.info("Scheduled sync task cancelled")
                break
            except Exception as exc:
                log.exception(f"Scheduled sync task error: {exc}")

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        if self._task is None:
            return
        log.info("Cancelling scheduled sync task...")
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
