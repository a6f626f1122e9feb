"""WebSocket router for sync progress updates."""

import json
import logging
from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from inventory_mirror.services.sync_orchestrator import SyncOrchestrator, get_orchestrator
from inventory_mirror.websocket.manager import manager
from inventory_mirror.websocket.schemas import (
    ErrorMessage,
    PongMessage,
    SubscribeMessage,
    SyncStatusMessage,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws/sync")
async def websocket_sync(
    websocket: WebSocket,
    orchestrator: Annotated[SyncOrchestrator, Depends(get_orchestrator)],
):
    """
    WebSocket endpoint for sync progress.

    Protocol:
    - Client connects (follows all sync targets by default) and receives
      the current sync status
    - Client may send a subscribe message to narrow the targets
    - Server pushes a sync_status message on every status change
    - Server sends pong in response to ping for keep-alive

    Message formats:
    Client -> Server:
        {"type": "subscribe", "targets": ["inventory-sync-main"]}
        {"type": "ping"}

    Server -> Client:
        {"type": "sync_status", "data": {...}, "timestamp": "2026-01-18T10:30:00Z"}
        {"type": "pong"}
        {"type": "error", "message": "..."}
    """
    await manager.connect(websocket)

    try:
        current = await orchestrator.status_repo.get()
        message = SyncStatusMessage(data=current, timestamp=datetime.now(UTC))
        await websocket.send_json(message.model_dump(mode="json"))

        while True:
            raw_message = await websocket.receive_text()

            try:
                data = json.loads(raw_message)
                msg_type = data.get("type")

                if msg_type == "subscribe":
                    msg = SubscribeMessage.model_validate(data)
                    await manager.update_subscription(websocket, targets=msg.targets)

                elif msg_type == "ping":
                    await websocket.send_json(PongMessage().model_dump())

                else:
                    error = ErrorMessage(message=f"Unknown message type: {msg_type}")
                    await websocket.send_json(error.model_dump())

            except json.JSONDecodeError:
                error = ErrorMessage(message="Invalid JSON")
                await websocket.send_json(error.model_dump())
            except Exception as e:
                logger.exception(f"Error processing message: {e}")
                error = ErrorMessage(message=str(e))
                await websocket.send_json(error.model_dump())

    except WebSocketDisconnect:
        await manager.disconnect(websocket)
    except Exception as e:
        logger.exception(f"WebSocket error: {e}")
        await manager.disconnect(websocket)
