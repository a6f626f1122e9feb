"""Tests for the sync progress WebSocket."""

from datetime import UTC, datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from inventory_mirror.main import app
from inventory_mirror.schemas.sync import SyncState, SyncStatusOut
from inventory_mirror.services.sync_orchestrator import get_orchestrator
from inventory_mirror.websocket.manager import ClientSubscription, ConnectionManager


@pytest.fixture
def sample_status() -> SyncStatusOut:
    """Create sample sync status for testing."""
    return SyncStatusOut(
        id="inventory-sync-main",
        status=SyncState.RUNNING,
        run_id="run-1",
        current_page=120,
        records_processed=24_000,
        total_pages=6000,
        total_records=150_000,
        started_at=datetime(2026, 1, 18, 10, 0, 0, tzinfo=UTC),
        last_activity_at=datetime(2026, 1, 18, 10, 30, 0, tzinfo=UTC),
    )


class TestClientSubscription:
    """Tests for ClientSubscription."""

    def test_matches_no_targets(self, sample_status):
        sub = ClientSubscription(websocket=MagicMock())

        assert sub.matches(sample_status) is True

    def test_matches_target_filter(self, sample_status):
        sub = ClientSubscription(websocket=MagicMock(), targets={"inventory-sync-main"})

        assert sub.matches(sample_status) is True

        sub.targets = {"other-target"}
        assert sub.matches(sample_status) is False


class TestConnectionManager:
    """Tests for ConnectionManager."""

    @pytest.mark.asyncio
    async def test_connect_and_disconnect(self):
        manager = ConnectionManager()
        ws = AsyncMock()

        await manager.connect(ws)
        assert manager.connection_count == 1
        ws.accept.assert_called_once()

        await manager.disconnect(ws)
        assert manager.connection_count == 0

        # Should not raise
        await manager.disconnect(ws)

    @pytest.mark.asyncio
    async def test_broadcast_no_connections(self, sample_status):
        manager = ConnectionManager()

        # Should not raise
        await manager.broadcast_status(sample_status)

    @pytest.mark.asyncio
    async def test_broadcast_to_matching_clients(self, sample_status):
        manager = ConnectionManager()
        ws1 = AsyncMock()
        ws2 = AsyncMock()
        await manager.connect(ws1)
        await manager.connect(ws2)
        await manager.update_subscription(ws2, targets=["other-target"])

        await manager.broadcast_status(sample_status)

        ws1.send_json.assert_called_once()
        ws2.send_json.assert_not_called()

        message = ws1.send_json.call_args.args[0]
        assert message["type"] == "sync_status"
        assert message["data"]["status"] == "running"
        assert message["data"]["current_page"] == 120
        assert message["data"]["progress_percent"] == 16.0

    @pytest.mark.asyncio
    async def test_broadcast_handles_send_error(self, sample_status):
        manager = ConnectionManager()
        ws = AsyncMock()
        ws.send_json.side_effect = Exception("Connection closed")
        await manager.connect(ws)

        # Should not raise
        await manager.broadcast_status(sample_status)


class TestSyncSocket:
    """Tests for the /ws/sync endpoint."""

    @pytest.fixture
    def socket_client(self, sample_status):
        orchestrator = SimpleNamespace(
            status_repo=SimpleNamespace(get=AsyncMock(return_value=sample_status))
        )
        app.dependency_overrides[get_orchestrator] = lambda: orchestrator
        yield TestClient(app)
        app.dependency_overrides.clear()

    def test_sends_current_status_on_connect(self, socket_client):
        with socket_client.websocket_connect("/ws/sync") as websocket:
            message = websocket.receive_json()

        assert message["type"] == "sync_status"
        assert message["data"]["run_id"] == "run-1"

    def test_ping_pong(self, socket_client):
        with socket_client.websocket_connect("/ws/sync") as websocket:
            websocket.receive_json()
            websocket.send_json({"type": "ping"})

            assert websocket.receive_json() == {"type": "pong"}

    def test_subscribe_then_unknown_and_invalid_messages(self, socket_client):
        with socket_client.websocket_connect("/ws/sync") as websocket:
            websocket.receive_json()
            websocket.send_json({"type": "subscribe", "targets": ["inventory-sync-main"]})
            websocket.send_json({"type": "shout"})
            unknown = websocket.receive_json()
            websocket.send_text("{not json")
            invalid = websocket.receive_json()

        assert unknown == {"type": "error", "message": "Unknown message type: shout"}
        assert invalid == {"type": "error", "message": "Invalid JSON"}
