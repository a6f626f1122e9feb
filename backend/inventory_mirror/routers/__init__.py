"""API routers."""

from inventory_mirror.routers.health import router as health_router
from inventory_mirror.routers.inventory import router as inventory_router
from inventory_mirror.routers.sync import router as sync_router

__all__ = ["health_router", "inventory_router", "sync_router"]
