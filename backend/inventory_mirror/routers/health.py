"""Health and readiness endpoints."""

from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from inventory_mirror.database import get_db
from inventory_mirror.models import InventoryRecord, SyncStatusRecord
from inventory_mirror.schemas.sync import SyncStatusOut

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: datetime
    record_count: int
    newest_record: datetime | None = None
    sync: SyncStatusOut | None = None


@router.get("/health", response_model=HealthResponse)
async def health_check(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> HealthResponse:
    """
    Health check endpoint with mirror and sync status.

    Returns the mirrored record count and the latest sync status row.
    """
    count_result = await db.execute(select(func.count()).select_from(InventoryRecord))
    record_count = count_result.scalar() or 0

    newest_result = await db.execute(select(func.max(InventoryRecord.updated_at)))
    newest = newest_result.scalar()

    status_result = await db.execute(
        select(SyncStatusRecord).order_by(SyncStatusRecord.last_activity_at.desc()).limit(1)
    )
    status_row = status_result.scalar_one_or_none()

    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(UTC),
        record_count=record_count,
        newest_record=newest,
        sync=SyncStatusOut.model_validate(status_row) if status_row else None,
    )


@router.get("/ready")
async def readiness_check() -> dict:
    """Simple readiness probe for container orchestration."""
    return {"status": "ready"}


@router.get("/live")
async def liveness_check() -> dict:
    """Simple liveness probe for container orchestration."""
    return {"status": "alive"}
