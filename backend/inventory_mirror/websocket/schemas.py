"""WebSocket message schemas."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel

from inventory_mirror.schemas.sync import SyncStatusOut


class SubscribeMessage(BaseModel):
    """Client subscription message selecting sync targets to follow."""

    type: Literal["subscribe"] = "subscribe"
    targets: list[str] | None = None  # empty or missing means all targets


class SyncStatusMessage(BaseModel):
    """Server message with an updated sync status."""

    type: Literal["sync_status"] = "sync_status"
    data: SyncStatusOut
    timestamp: datetime


class PingMessage(BaseModel):
    """Ping message for keep-alive."""

    type: Literal["ping"] = "ping"


class PongMessage(BaseModel):
    """Pong response for keep-alive."""

    type: Literal["pong"] = "pong"


class ErrorMessage(BaseModel):
    """Error message from server."""

    type: Literal["error"] = "error"
    message: str
