"""Background task scheduler for inventory ingestion."""

import logging
from datetime import UTC, datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from inventory_mirror.config import get_settings
from inventory_mirror.schemas.sync import ControlResult, SyncMode
from inventory_mirror.services.sync_orchestrator import get_orchestrator

logger = logging.getLogger(__name__)
settings = get_settings()

# Global scheduler instance
scheduler: AsyncIOScheduler | None = None


async def sync_inventory_job() -> None:
    """Background job resuming (or starting) the inventory sync."""
    logger.info("Starting scheduled inventory sync")
    try:
        response = await get_orchestrator().start(SyncMode.RESUME)
        if response.result is ControlResult.ALREADY_RUNNING:
            logger.info(f"Skipping scheduled sync: {response.message}")
        elif response.result is not ControlResult.SUCCESS:
            logger.warning(f"Scheduled sync did not start: {response.message}")
    except Exception as e:
        logger.error(f"Inventory sync failed: {e}", exc_info=True)


def setup_scheduler() -> AsyncIOScheduler:
    """Set up and start the background task scheduler."""
    global scheduler

    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        sync_inventory_job,
        trigger=IntervalTrigger(minutes=settings.sync_interval_minutes),
        next_run_time=datetime.now(UTC),
        id="sync_inventory",
        name="Sync inventory from upstream",
        replace_existing=True,
        max_instances=1,
    )

    scheduler.start()
    logger.info("Scheduler started")

    return scheduler


def shutdown_scheduler() -> None:
    """Shut down the scheduler gracefully."""
    global scheduler

    if scheduler:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler shut down")
        scheduler = None
