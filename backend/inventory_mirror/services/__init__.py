"""Services for data ingestion, pagination and sync control."""

from inventory_mirror.services.checkpoint_store import CheckpointStore
from inventory_mirror.services.completion_oracle import CompletionOracle
from inventory_mirror.services.error_classifier import ErrorClassifier
from inventory_mirror.services.ingestion import IngestionPipeline, InventoryWriter, RunOptions
from inventory_mirror.services.pagination import PaginationEngine
from inventory_mirror.services.sync_orchestrator import SyncOrchestrator
from inventory_mirror.services.sync_status import SyncStatusRepository
from inventory_mirror.services.upstream_client import UpstreamClient

__all__ = [
    "CheckpointStore",
    "CompletionOracle",
    "ErrorClassifier",
    "IngestionPipeline",
    "InventoryWriter",
    "PaginationEngine",
    "RunOptions",
    "SyncOrchestrator",
    "SyncStatusRepository",
    "UpstreamClient",
]
