# Services package
from ordersync.services.batch_writer import BatchWriter
from ordersync.services.status_feed import SyncStatusFeed
from ordersync.services.orchestrator import CancellationToken, SyncOrchestrator
from ordersync.services.connection_service import ConnectionService
from ordersync.services.sync_service import SyncService
from ordersync.services.scheduler import SyncScheduler

__all__ = [
    "BatchWriter",
    "SyncStatusFeed",
    "CancellationToken",
    "SyncOrchestrator",
    "ConnectionService",
    "SyncService",
    "SyncScheduler",
]
