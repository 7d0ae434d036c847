"""Sync entrypoint - Standalone script for running sync jobs.

Usage:
    python -m ordersync.sync_entrypoint incremental               # All active tenants
    python -m ordersync.sync_entrypoint full shop-a shop-b        # Selected tenants
    python -m ordersync.sync_entrypoint manual shop-a
    python -m ordersync.sync_entrypoint replay shop-a manual      # Replay failed order batches
    python -m ordersync.sync_entrypoint replay shop-a full products
"""

import asyncio
import sys
from typing import Dict, List

from ordersync.core.logging import get_logger
from ordersync.main import build_sync_service
from ordersync.schemas.sync import RecordCategory, ReplayResult, SyncClass, SyncResult
from ordersync.services.scheduler import SyncScheduler

logger = get_logger("sync_entrypoint")

USAGE = "Usage: python -m ordersync.sync_entrypoint <full|incremental|manual> [tenant ...] | replay <tenant> <sync_class> [category]"


async def run_sync_job(sync_class: SyncClass, tenants: List[str]) -> Dict[str, SyncResult]:
    """Run one sync class for the given tenants, or every active tenant."""
    service = build_sync_service()
    if not tenants:
        logger.info(f"Running {sync_class.value} sync for all active tenants")
        return await SyncScheduler(service, stagger=service.config.tenant_stagger).run_once(sync_class)

    logger.info(f"Running {sync_class.value} sync for {', '.join(tenants)}")
    results = await asyncio.gather(*(service.run(tenant, sync_class) for tenant in tenants))
    return dict(zip(tenants, results))


async def run_replay_job(tenant_id: str, sync_class: SyncClass, category: RecordCategory) -> ReplayResult:
    service = build_sync_service()
    return await service.replay_failed_batches(tenant_id, sync_class, category)


def main():
    """Main entry point for the sync CLI."""
    args = sys.argv[1:]
    if not args:
        logger.error(USAGE)
        sys.exit(1)

    command = args[0]
    if command == "replay":
        if len(args) < 3:
            logger.error(USAGE)
            sys.exit(1)
        try:
            sync_class = SyncClass(args[2])
            category = RecordCategory(args[3]) if len(args) > 3 else RecordCategory.ORDERS
        except ValueError as exc:
            logger.error(f"{exc}. {USAGE}")
            sys.exit(1)
        result = asyncio.run(run_replay_job(args[1], sync_class, category))
        logger.info(f"Replay completed: recovered={result.recovered} still_failing={result.still_failing}")
        if not result.success:
            sys.exit(1)
        return result

    try:
        sync_class = SyncClass(command)
    except ValueError:
        logger.error(f"Invalid sync class: {command}. {USAGE}")
        sys.exit(1)

    logger.info("Sync pipeline starting...")
    results = asyncio.run(run_sync_job(sync_class, args[1:]))

    for tenant_id, result in results.items():
        logger.info(f"{tenant_id}: {result.stage.value} items={result.total_items} pages={result.pages_processed}")

    # Exit with error code if any tenant failed
    if any(not result.success for result in results.values()):
        sys.exit(1)

    return results


if __name__ == "__main__":
    main()
