"""Sync control endpoints."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request, Response

from inventory_mirror.rate_limit import SYNC_CONTROL_RATE_LIMIT, limiter
from inventory_mirror.schemas.sync import (
    CheckpointRequest,
    ControlResult,
    SyncControlResponse,
    SyncStartRequest,
)
from inventory_mirror.services.sync_orchestrator import SyncOrchestrator, get_orchestrator

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/sync", tags=["sync"])

_HTTP_STATUS = {
    ControlResult.SUCCESS: 200,
    ControlResult.ALREADY_RUNNING: 409,
    ControlResult.NO_CHECKPOINT: 404,
    ControlResult.FAILED: 503,
}


def _respond(response: Response, outcome: SyncControlResponse) -> SyncControlResponse:
    response.status_code = _HTTP_STATUS[outcome.result]
    return outcome


@router.get("/status", response_model=SyncControlResponse)
async def sync_status(
    orchestrator: Annotated[SyncOrchestrator, Depends(get_orchestrator)],
) -> SyncControlResponse:
    """Current sync status, progress and stored checkpoint."""
    return await orchestrator.status()


@router.post("/start", response_model=SyncControlResponse)
@limiter.limit(SYNC_CONTROL_RATE_LIMIT)
async def start_sync(
    request: Request,
    response: Response,
    body: SyncStartRequest,
    orchestrator: Annotated[SyncOrchestrator, Depends(get_orchestrator)],
) -> SyncControlResponse:
    """
    Start a fresh sync or resume from the latest valid checkpoint.

    Returns 409 when a run is already active and 503 when the upstream
    cannot be used (deployment, credentials or configuration problems).
    """
    outcome = await orchestrator.start(mode=body.mode, from_page=body.from_page)
    return _respond(response, outcome)


@router.post("/stop", response_model=SyncControlResponse)
@limiter.limit(SYNC_CONTROL_RATE_LIMIT)
async def stop_sync(
    request: Request,
    response: Response,
    orchestrator: Annotated[SyncOrchestrator, Depends(get_orchestrator)],
) -> SyncControlResponse:
    """Pause the active run at the next page boundary."""
    return _respond(response, await orchestrator.stop())


@router.post("/checkpoint", response_model=SyncControlResponse)
@limiter.limit(SYNC_CONTROL_RATE_LIMIT)
async def create_checkpoint(
    request: Request,
    response: Response,
    body: CheckpointRequest,
    orchestrator: Annotated[SyncOrchestrator, Depends(get_orchestrator)],
) -> SyncControlResponse:
    """Create a recovery checkpoint so the next resume starts at `page`."""
    outcome = await orchestrator.checkpoint(body.page, body.total_processed)
    return _respond(response, outcome)


@router.delete("/checkpoint", response_model=SyncControlResponse)
@limiter.limit(SYNC_CONTROL_RATE_LIMIT)
async def clear_checkpoint(
    request: Request,
    response: Response,
    orchestrator: Annotated[SyncOrchestrator, Depends(get_orchestrator)],
) -> SyncControlResponse:
    """
    Delete the stored checkpoint.

    WARNING: the next resume will start from page 1.
    """
    return _respond(response, await orchestrator.clear_checkpoint())
