"""Pydantic schemas for sync status, checkpoints and control results."""

from datetime import UTC, datetime, timedelta
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field


class SyncState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"
    PAUSED = "paused"


class SyncMode(str, Enum):
    FRESH = "fresh"
    RESUME = "resume"


class ControlResult(str, Enum):
    """Result codes of the sync control surface."""

    SUCCESS = "success"
    ALREADY_RUNNING = "already_running"
    NO_CHECKPOINT = "no_checkpoint"
    FAILED = "failed"


def now_ms() -> int:
    return int(datetime.now(UTC).timestamp() * 1000)


class Checkpoint(BaseModel):
    """
    Durable ingestion progress for one run.

    Everything up to and including `last_page_processed` is known to be
    written. Serialized with the camelCase keys of the on-disk record,
    timestamps in epoch milliseconds.
    """

    model_config = ConfigDict(populate_by_name=True)

    run_id: str = Field(alias="runId")
    last_page_processed: int = Field(alias="lastPage", ge=0)
    total_records_processed: int = Field(alias="totalProcessed", ge=0)
    start_time: int = Field(alias="startTime")
    last_update_time: int = Field(alias="lastUpdateTime")

    def age(self, now: datetime | None = None) -> timedelta:
        now = now or datetime.now(UTC)
        return now - datetime.fromtimestamp(self.last_update_time / 1000, tz=UTC)

    def is_valid(self, max_age: timedelta, now: datetime | None = None) -> bool:
        """A checkpoint older than `max_age` is too stale to resume from."""
        return self.age(now) < max_age


class SyncStatusOut(BaseModel):
    """Sync status response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    status: SyncState
    run_id: str | None = None
    current_page: int = 0
    records_processed: int = 0
    total_pages: int | None = None
    total_records: int | None = None
    error_count: int = 0
    failed_pages: int = 0
    error_message: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    last_activity_at: datetime | None = None

    @computed_field
    @property
    def progress_percent(self) -> float | None:
        """Share of the discovered upstream total processed so far."""
        if not self.total_records:
            return None
        return round(self.records_processed / self.total_records * 100, 2)


class SyncStartRequest(BaseModel):
    mode: SyncMode = SyncMode.RESUME
    from_page: int | None = Field(default=None, ge=1)


class CheckpointRequest(BaseModel):
    page: int = Field(ge=1, description="Page the next resume should start at")
    total_processed: int | None = Field(default=None, ge=0)


class SyncControlResponse(BaseModel):
    """Outcome of a sync control operation."""

    result: ControlResult
    message: str
    status: SyncStatusOut | None = None
    checkpoint: Checkpoint | None = None
