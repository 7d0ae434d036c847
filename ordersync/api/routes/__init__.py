from ordersync.api.routes.health import router as health_router
from ordersync.api.routes.sync import router as sync_router

__all__ = ["health_router", "sync_router"]
