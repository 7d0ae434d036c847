from ordersync.models.base import Base
from ordersync.models.checkpoints import SyncCheckpoint
from ordersync.models.connections import SourceConnection
from ordersync.models.failed_batches import FailedBatchEntry
from ordersync.models.records import ShopCustomer, ShopOrder, ShopProduct
from ordersync.models.runs import SyncRun

__all__ = [
    "Base",
    "SyncCheckpoint",
    "SourceConnection",
    "FailedBatchEntry",
    "ShopOrder",
    "ShopProduct",
    "ShopCustomer",
    "SyncRun",
]
