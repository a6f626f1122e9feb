"""WebSocket module for live sync progress updates."""

from inventory_mirror.websocket.manager import ConnectionManager
from inventory_mirror.websocket.router import router as websocket_router

__all__ = ["ConnectionManager", "websocket_router"]
