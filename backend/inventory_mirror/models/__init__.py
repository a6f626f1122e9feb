"""Database models."""

from inventory_mirror.models.inventory_record import InventoryRecord
from inventory_mirror.models.sync_status import SyncStatusRecord

__all__ = [
    "InventoryRecord",
    "SyncStatusRecord",
]
