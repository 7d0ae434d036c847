"""Latest sync progress per tenant, readable from any thread."""

from __future__ import annotations

import threading
from typing import Dict, Optional

from ordersync.schemas.sync import SyncStatus


class SyncStatusFeed:
    """Ephemeral snapshot store. Orchestrators publish, the reporting layer polls."""

    def __init__(self):
        self._lock = threading.Lock()
        self._statuses: Dict[str, SyncStatus] = {}

    def publish(self, status: SyncStatus) -> None:
        with self._lock:
            self._statuses[status.tenant_id] = status

    def get(self, tenant_id: str) -> Optional[SyncStatus]:
        with self._lock:
            status = self._statuses.get(tenant_id)
        return status.model_copy() if status else None

    def snapshot(self) -> Dict[str, SyncStatus]:
        """Copies of every tenant's latest status."""
        with self._lock:
            return {tenant: status.model_copy() for tenant, status in self._statuses.items()}
