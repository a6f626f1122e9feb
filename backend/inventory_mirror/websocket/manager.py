"""WebSocket connection manager for broadcasting sync progress."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime

from fastapi import WebSocket

from inventory_mirror.schemas.sync import SyncStatusOut
from inventory_mirror.websocket.schemas import SyncStatusMessage

logger = logging.getLogger(__name__)


@dataclass
class ClientSubscription:
    """Tracks a client's subscription preferences."""

    websocket: WebSocket
    targets: set[str] = field(default_factory=set)
    connected_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def matches(self, status: SyncStatusOut) -> bool:
        """Check if a status update is for a target this client follows."""
        return not self.targets or status.id in self.targets


class ConnectionManager:
    """
    Manages WebSocket connections and broadcasts sync status updates.

    Updates are for progress display only. Designed for single-instance
    deployment.
    """

    def __init__(self):
        self._connections: dict[WebSocket, ClientSubscription] = {}
        self._lock = asyncio.Lock()

    @property
    def connection_count(self) -> int:
        """Number of active connections."""
        return len(self._connections)

    async def connect(self, websocket: WebSocket) -> None:
        """Accept a new WebSocket connection."""
        await websocket.accept()
        async with self._lock:
            self._connections[websocket] = ClientSubscription(websocket=websocket)
        logger.info(f"WebSocket connected. Total connections: {self.connection_count}")

    async def disconnect(self, websocket: WebSocket) -> None:
        """Remove a disconnected WebSocket."""
        async with self._lock:
            if websocket in self._connections:
                del self._connections[websocket]
        logger.info(f"WebSocket disconnected. Total connections: {self.connection_count}")

    async def update_subscription(
        self,
        websocket: WebSocket,
        targets: list[str] | None = None,
    ) -> None:
        """Update a client's subscription preferences."""
        async with self._lock:
            if websocket in self._connections and targets is not None:
                self._connections[websocket].targets = set(targets)
                logger.debug(f"Updated subscription: targets={targets}")

    async def broadcast_status(self, status: SyncStatusOut) -> None:
        """Send a status update to every subscriber following its target."""
        async with self._lock:
            if not self._connections:
                return

            message = SyncStatusMessage(data=status, timestamp=datetime.now(UTC))
            tasks = [
                self._send_safe(websocket, message)
                for websocket, subscription in list(self._connections.items())
                if subscription.matches(status)
            ]

            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)
                logger.debug(f"Broadcast sync status to {len(tasks)} subscribers")

    async def _send_safe(self, websocket: WebSocket, message: SyncStatusMessage) -> None:
        """Send message to websocket, handling errors gracefully."""
        try:
            await websocket.send_json(message.model_dump(mode="json"))
        except Exception as e:
            logger.warning(f"Failed to send to websocket: {e}")
            # Schedule disconnect (don't do it here to avoid deadlock)
            asyncio.create_task(self.disconnect(websocket))


# Global singleton instance
manager = ConnectionManager()
