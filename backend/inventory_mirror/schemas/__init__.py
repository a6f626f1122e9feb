"""Pydantic schemas for API request/response validation."""

from inventory_mirror.schemas.inventory import (
    InventoryItemOut,
    PageMode,
    PageResult,
    QueryRequest,
    SortDirection,
    SortField,
)
from inventory_mirror.schemas.sync import (
    Checkpoint,
    ControlResult,
    SyncControlResponse,
    SyncMode,
    SyncState,
    SyncStatusOut,
)

__all__ = [
    "Checkpoint",
    "ControlResult",
    "InventoryItemOut",
    "PageMode",
    "PageResult",
    "QueryRequest",
    "SortDirection",
    "SortField",
    "SyncControlResponse",
    "SyncMode",
    "SyncState",
    "SyncStatusOut",
]
