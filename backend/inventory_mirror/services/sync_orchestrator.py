"""Coordinates start, resume, stop and recovery of ingestion runs."""

import asyncio
import logging
import secrets
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from functools import lru_cache
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from inventory_mirror.config import Settings, get_settings
from inventory_mirror.schemas.sync import (
    ControlResult,
    SyncControlResponse,
    SyncMode,
    SyncState,
    SyncStatusOut,
)
from inventory_mirror.services.checkpoint_store import CheckpointStore
from inventory_mirror.services.completion_oracle import CompletionOracle
from inventory_mirror.services.error_classifier import ErrorClassifier, RetryAction
from inventory_mirror.services.ingestion import IngestionPipeline, InventoryWriter, RunOptions
from inventory_mirror.services.sync_status import SyncStatusRepository
from inventory_mirror.services.upstream_client import UpstreamClient

logger = logging.getLogger(__name__)


class InvalidTransition(Exception):
    """A sync state change not allowed by the state machine."""


class SyncStateMachine:
    """
    Allowed sync status transitions.

    idle -> running -> {completed, completed_with_errors, failed, paused};
    failed and paused resume into running, and finished runs may start again.
    """

    TRANSITIONS: dict[SyncState, frozenset[SyncState]] = {
        SyncState.IDLE: frozenset({SyncState.RUNNING}),
        SyncState.RUNNING: frozenset(
            {
                SyncState.COMPLETED,
                SyncState.COMPLETED_WITH_ERRORS,
                SyncState.FAILED,
                SyncState.PAUSED,
            }
        ),
        SyncState.COMPLETED: frozenset({SyncState.RUNNING}),
        SyncState.COMPLETED_WITH_ERRORS: frozenset({SyncState.RUNNING}),
        SyncState.FAILED: frozenset({SyncState.RUNNING}),
        SyncState.PAUSED: frozenset({SyncState.RUNNING}),
    }

    def __init__(self, state: SyncState = SyncState.IDLE):
        self.state = state

    def can(self, target: SyncState) -> bool:
        return target in self.TRANSITIONS[self.state]

    def transition(self, target: SyncState) -> SyncState:
        if not self.can(target):
            raise InvalidTransition(f"Cannot move sync from {self.state.value} to {target.value}")
        logger.debug(f"Sync state {self.state.value} -> {target.value}")
        self.state = target
        return target


def _aware(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class SyncOrchestrator:
    """
    Owns the sync state machine and the single active ingestion task.

    Only one run may be `running` at a time; the guard checks both the task
    held by this process and the persisted status row, so a row left
    `running` by a crashed process blocks starts until it goes stale.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        client: UpstreamClient | None = None,
        checkpoints: CheckpointStore | None = None,
        status: SyncStatusRepository | None = None,
        classifier: ErrorClassifier | None = None,
        oracle: CompletionOracle | None = None,
        settings: Settings | None = None,
        probe: bool = True,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.settings = settings or get_settings()
        self.session_factory = session_factory
        self.client = client or UpstreamClient()
        self.checkpoints = checkpoints or CheckpointStore()
        self.status_repo = status or SyncStatusRepository(
            session_factory, self.settings.sync_target_id
        )
        self.classifier = classifier or ErrorClassifier(self.settings)
        self.oracle = oracle or CompletionOracle(settings=self.settings)
        self.probe = probe
        self.sleep = sleep
        self.stale_after = timedelta(minutes=self.settings.stale_run_minutes)

        self.machine = SyncStateMachine()
        self._lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[SyncStatusOut] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _default_options(self) -> RunOptions:
        return RunOptions(
            page_size=self.settings.upstream_page_size,
            max_attempts=self.settings.max_page_attempts,
            checkpoint_every=self.settings.checkpoint_every_pages,
            max_pages=self.settings.max_pages_per_run,
        )

    def _is_stale(self, status: SyncStatusOut) -> bool:
        last_activity = _aware(status.last_activity_at)
        return last_activity is None or datetime.now(UTC) - last_activity > self.stale_after

    async def status(self) -> SyncControlResponse:
        """Current status plus the stored checkpoint, if any."""
        current = await self.status_repo.get()
        checkpoint = self.checkpoints.load()
        message = f"Sync is {current.status.value}"
        if current.progress_percent is not None:
            message += f" ({current.progress_percent:.1f}% of {current.total_records} records)"
        return SyncControlResponse(
            result=ControlResult.SUCCESS,
            message=message,
            status=current,
            checkpoint=checkpoint,
        )

    async def start(
        self,
        mode: SyncMode = SyncMode.RESUME,
        from_page: int | None = None,
        options: RunOptions | None = None,
        wait: bool = False,
    ) -> SyncControlResponse:
        """
        Start an ingestion run in the background.

        Fresh runs discard any checkpoint and begin at `from_page` (default 1).
        Resume runs begin at `from_page` when given, else right after the
        latest valid checkpoint, else degrade to a fresh run from page 1.
        """
        options = options or self._default_options()

        async with self._lock:
            current = await self.status_repo.get()
            self.machine.state = current.status

            if current.status is SyncState.RUNNING:
                if self.is_running or not self._is_stale(current):
                    return SyncControlResponse(
                        result=ControlResult.ALREADY_RUNNING,
                        message=f"Sync already running at page {current.current_page}",
                        status=current,
                    )
                logger.warning(
                    f"Sync row stuck in running since {current.last_activity_at}; marking failed"
                )
                self.machine.transition(SyncState.FAILED)
                current = await self.status_repo.update(
                    status=SyncState.FAILED,
                    error_message="Interrupted: previous run stopped reporting progress",
                )

            start_page, message = self._plan_start(mode, from_page, options, current)

            self.machine.transition(SyncState.RUNNING)
            status = await self.status_repo.update(
                status=SyncState.RUNNING,
                run_id=options.run_id,
                current_page=start_page,
                records_processed=options.records_baseline,
                started_at=datetime.now(UTC),
                completed_at=None,
                error_message=None,
            )

            if self.probe:
                failure = await self._probe_upstream()
                if failure is not None:
                    self.machine.transition(SyncState.FAILED)
                    status = await self.status_repo.update(
                        status=SyncState.FAILED, error_message=failure
                    )
                    return SyncControlResponse(
                        result=ControlResult.FAILED, message=failure, status=status
                    )

            self._stop_event.clear()
            pipeline = IngestionPipeline(
                self.session_factory,
                client=self.client,
                classifier=self.classifier,
                oracle=self.oracle,
                checkpoints=self.checkpoints,
                status=self.status_repo,
                writer=InventoryWriter(
                    self.session_factory,
                    chunk_size=self.settings.upsert_chunk_size,
                    concurrency=self.settings.upsert_concurrency,
                ),
                stop_event=self._stop_event,
                sleep=self.sleep,
            )
            self._task = asyncio.create_task(self._run(pipeline, start_page, options))
            logger.info(f"Sync started ({mode.value}): {message}")

        if wait:
            status = await self.wait() or status
        return SyncControlResponse(result=ControlResult.SUCCESS, message=message, status=status)

    def _plan_start(
        self,
        mode: SyncMode,
        from_page: int | None,
        options: RunOptions,
        current: SyncStatusOut,
    ) -> tuple[int, str]:
        """Pick the start page and fill run id / baseline into `options`."""
        if mode is SyncMode.FRESH:
            self.checkpoints.clear()
            start_page = from_page or 1
            options.records_baseline = 0
            options.run_id = options.run_id or f"fresh-{secrets.token_hex(6)}"
            return start_page, f"Fresh sync from page {start_page}"

        if from_page is not None:
            options.records_baseline = current.records_processed
            options.run_id = options.run_id or f"resume-{secrets.token_hex(6)}"
            return from_page, f"Resuming from requested page {from_page}"

        checkpoint = self.checkpoints.load_valid()
        if checkpoint is not None:
            options.records_baseline = checkpoint.total_records_processed
            options.run_id = options.run_id or checkpoint.run_id
            start_page = checkpoint.last_page_processed + 1
            return start_page, (
                f"Resuming run {checkpoint.run_id} from page {start_page} "
                f"({checkpoint.total_records_processed} records already processed)"
            )

        # Nothing valid to resume from; a stale checkpoint must not linger.
        self.checkpoints.clear()
        options.records_baseline = 0
        options.run_id = options.run_id or f"fresh-{secrets.token_hex(6)}"
        return 1, "No valid checkpoint; starting fresh from page 1"

    async def _probe_upstream(self) -> str | None:
        """Connectivity test; returns a failure message for fatal problems."""
        try:
            await self.client.probe()
        except Exception as e:
            decision = self.classifier.classify(e)
            if decision.action is RetryAction.ABORT:
                logger.error(f"Upstream probe failed: {decision.describe(e)}")
                return decision.describe(e)
            logger.warning(f"Upstream probe failed ({decision.category.value}), continuing: {e}")
        return None

    async def _run(
        self, pipeline: IngestionPipeline, start_page: int, options: RunOptions
    ) -> SyncStatusOut:
        try:
            final = await pipeline.run(start_page, options)
        except Exception as e:
            logger.error(f"Ingestion run crashed: {e}", exc_info=True)
            final = await self.status_repo.update(
                status=SyncState.FAILED,
                error_message=f"[internal] {e} (hint: check service logs)",
            )
        self.machine.transition(final.status)
        return final

    async def wait(self) -> SyncStatusOut | None:
        """Wait for the active run, returning its terminal status."""
        if self._task is None:
            return None
        return await self._task

    async def stop(self) -> SyncControlResponse:
        """Ask the active run to pause at the next page boundary."""
        if not self.is_running:
            return SyncControlResponse(
                result=ControlResult.FAILED,
                message="No active sync run to stop",
                status=await self.status_repo.get(),
            )
        self._stop_event.set()
        logger.info("Stop requested; run will pause at the next page boundary")
        return SyncControlResponse(
            result=ControlResult.SUCCESS,
            message="Stop requested; the run will pause at the next page boundary",
            status=await self.status_repo.get(),
        )

    async def checkpoint(
        self, page: int, total_processed: int | None = None
    ) -> SyncControlResponse:
        """
        Write an operator-directed checkpoint so the next resume starts at `page`.

        Without a known count, processed records are estimated as
        `page * page_size`.
        """
        if self.is_running:
            return SyncControlResponse(
                result=ControlResult.ALREADY_RUNNING,
                message="Cannot write a checkpoint while a sync is running",
                status=await self.status_repo.get(),
            )
        if total_processed is None:
            total_processed = max(0, page * self.settings.upstream_page_size)

        checkpoint = self.checkpoints.record(
            run_id=f"recovery-{int(datetime.now(UTC).timestamp())}-{secrets.token_hex(4)}",
            last_page=page - 1,
            total_processed=total_processed,
        )
        logger.info(f"Recovery checkpoint created: resume will start at page {page}")
        return SyncControlResponse(
            result=ControlResult.SUCCESS,
            message=f"Checkpoint created; resume will start at page {page}",
            status=await self.status_repo.get(),
            checkpoint=checkpoint,
        )

    async def clear_checkpoint(self) -> SyncControlResponse:
        if self.is_running:
            return SyncControlResponse(
                result=ControlResult.ALREADY_RUNNING,
                message="Cannot clear the checkpoint while a sync is running",
            )
        if not self.checkpoints.clear():
            return SyncControlResponse(
                result=ControlResult.NO_CHECKPOINT, message="No checkpoint to clear"
            )
        return SyncControlResponse(result=ControlResult.SUCCESS, message="Checkpoint cleared")

    async def shutdown(self) -> None:
        """Pause the active run and wait for it to settle."""
        if self.is_running:
            self._stop_event.set()
            await self.wait()


@lru_cache
def get_orchestrator() -> SyncOrchestrator:
    """Process-wide orchestrator bound to the application database."""
    from inventory_mirror.database import async_session_maker

    return SyncOrchestrator(async_session_maker)
