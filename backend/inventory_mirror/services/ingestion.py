"""Ingestion pipeline mirroring the upstream inventory into the local table."""

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from inventory_mirror.config import get_settings
from inventory_mirror.models import InventoryRecord
from inventory_mirror.schemas.sync import SyncState, SyncStatusOut
from inventory_mirror.services.checkpoint_store import CheckpointStore
from inventory_mirror.services.completion_oracle import CompletionOracle
from inventory_mirror.services.error_classifier import (
    ErrorClassifier,
    RetryAction,
    RetryDecision,
)
from inventory_mirror.services.sync_status import SyncStatusRepository, dialect_insert
from inventory_mirror.services.upstream_client import UpstreamClient, UpstreamPage

logger = logging.getLogger(__name__)
settings = get_settings()

# Columns rewritten when an existing id is upserted again
UPDATABLE_COLUMNS = (
    "make",
    "model",
    "year",
    "fuel",
    "transmission",
    "color",
    "body_type",
    "condition",
    "vin",
    "lot_number",
    "price_cents",
    "mileage",
    "rank_score",
    "images",
    "raw_payload",
)


def _name(value: Any) -> str | None:
    """Upstream attributes arrive either as plain strings or `{id, name}` objects."""
    if isinstance(value, dict):
        value = value.get("name")
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _to_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    return int(float(value))


def _to_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    return float(value)


def transform_item(item: dict[str, Any]) -> dict[str, Any] | None:
    """
    Transform a raw upstream item into inventory_records values.

    Accepts both the nested auction shape (manufacturer/lots/odometer) and
    flat items that already use column names. Returns None when the item has
    no id or a field cannot be coerced.
    """
    raw_id = item.get("id")
    if raw_id is None or str(raw_id).strip() == "":
        return None

    lots = item.get("lots")
    lot = lots[0] if isinstance(lots, list) and lots and isinstance(lots[0], dict) else {}

    try:
        if "price_cents" in item:
            price_cents = _to_int(item.get("price_cents"))
        else:
            price = _to_float(lot.get("buy_now") or lot.get("bid") or item.get("price"))
            price_cents = round(price * 100) if price and price > 0 else None

        if "mileage" in item:
            mileage = _to_int(item.get("mileage"))
        else:
            odometer = lot.get("odometer") or {}
            mileage = _to_int(odometer.get("km")) if isinstance(odometer, dict) else None

        images = lot.get("images") or item.get("images")
        if isinstance(images, dict):
            images = images.get("normal") or []

        return {
            "id": str(raw_id).strip(),
            "make": _name(item.get("make") or item.get("manufacturer")) or "",
            "model": _name(item.get("model")),
            "year": _to_int(item.get("year")) or 0,
            "fuel": _name(item.get("fuel")),
            "transmission": _name(item.get("transmission")),
            "color": _name(item.get("color")),
            "body_type": _name(item.get("body_type")),
            "condition": _name(item.get("condition") or lot.get("condition")),
            "vin": _name(item.get("vin")),
            "lot_number": _name(item.get("lot_number") or lot.get("lot")),
            "price_cents": price_cents,
            "mileage": mileage,
            "rank_score": _to_float(item.get("rank_score")),
            "images": [str(url) for url in images] if isinstance(images, list) else None,
            "raw_payload": item,
        }
    except (TypeError, ValueError) as e:
        logger.warning(f"Skipping item {raw_id}: {e}")
        return None


class InventoryWriter:
    """
    Idempotent batch upsert of transformed items, keyed by `id`.

    A batch is split into chunks written concurrently, one session per chunk,
    bounded by `concurrency`. A chunk that fails as a whole is retried row by
    row so only the offending rows are counted as failures.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        chunk_size: int = settings.upsert_chunk_size,
        concurrency: int = settings.upsert_concurrency,
    ):
        self.session_factory = session_factory
        self.chunk_size = max(1, chunk_size)
        self.semaphore = asyncio.Semaphore(max(1, concurrency))

    def _upsert_statement(self, session: AsyncSession, rows: list[dict[str, Any]]):
        insert = dialect_insert(session)
        stmt = insert(InventoryRecord).values(rows)
        update = {column: stmt.excluded[column] for column in UPDATABLE_COLUMNS}
        update["updated_at"] = datetime.now(UTC)
        return stmt.on_conflict_do_update(index_elements=["id"], set_=update)

    async def upsert_items(self, items: list[dict[str, Any]]) -> tuple[int, int]:
        """
        Upsert a page of raw items.

        Returns:
            Tuple of (rows written, rows failed)
        """
        failed = 0
        by_id: dict[str, dict[str, Any]] = {}
        for item in items:
            row = transform_item(item) if isinstance(item, dict) else None
            if row is None:
                failed += 1
                continue
            # One statement must not touch the same id twice
            by_id[row["id"]] = row

        rows = list(by_id.values())
        chunks = [rows[i:i + self.chunk_size] for i in range(0, len(rows), self.chunk_size)]
        results = await asyncio.gather(*(self._write_chunk(chunk) for chunk in chunks))

        written = sum(ok for ok, _ in results)
        failed += sum(bad for _, bad in results)
        return written, failed

    async def _write_chunk(self, rows: list[dict[str, Any]]) -> tuple[int, int]:
        async with self.semaphore:
            async with self.session_factory() as session:
                try:
                    await session.execute(self._upsert_statement(session, rows))
                    await session.commit()
                    return len(rows), 0
                except SQLAlchemyError as e:
                    await session.rollback()
                    logger.warning(f"Chunk upsert of {len(rows)} rows failed, retrying per row: {e}")

                written = failed = 0
                for row in rows:
                    try:
                        await session.execute(self._upsert_statement(session, [row]))
                        await session.commit()
                        written += 1
                    except SQLAlchemyError as e:
                        await session.rollback()
                        logger.error(f"Failed to upsert item {row['id']}: {e}")
                        failed += 1
                return written, failed


@dataclass
class RunOptions:
    """Knobs for one ingestion run."""

    page_size: int = settings.upstream_page_size
    max_attempts: int = settings.max_page_attempts
    checkpoint_every: int = settings.checkpoint_every_pages
    continue_on_page_error: bool = False
    max_pages: int | None = settings.max_pages_per_run
    run_id: str | None = None
    records_baseline: int = 0
    filters: dict[str, Any] = field(default_factory=dict)


@dataclass
class RunProgress:
    """In-memory loop state of the current run."""

    run_id: str
    start_page: int
    current_page: int
    records_processed: int
    last_successful_page: int | None = None
    consecutive_empty_pages: int = 0
    pages_this_run: int = 0
    pages_since_checkpoint: int = 0
    error_count: int = 0
    failed_pages: int = 0
    api_total: int | None = None
    api_last_page: int | None = None


class PageFetchError(Exception):
    """A page could not be fetched within its retry budget."""

    def __init__(self, page: int, error: BaseException, decision: RetryDecision, attempts: int):
        super().__init__(decision.describe(error))
        self.page = page
        self.error = error
        self.decision = decision
        self.attempts = attempts


class IngestionPipeline:
    """
    Pages through the upstream strictly in order and mirrors each page.

    A page is fetched only after the previous page's batch is durably
    upserted, so a checkpoint at page N guarantees pages 1..N are written.
    The stop signal is checked at page boundaries only.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        client: UpstreamClient | None = None,
        classifier: ErrorClassifier | None = None,
        oracle: CompletionOracle | None = None,
        checkpoints: CheckpointStore | None = None,
        status: SyncStatusRepository | None = None,
        writer: InventoryWriter | None = None,
        stop_event: asyncio.Event | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.client = client or UpstreamClient()
        self.classifier = classifier or ErrorClassifier()
        self.oracle = oracle or CompletionOracle()
        self.checkpoints = checkpoints or CheckpointStore()
        self.status = status or SyncStatusRepository(session_factory)
        self.writer = writer or InventoryWriter(session_factory)
        self.stop_event = stop_event or asyncio.Event()
        self.sleep = sleep

    async def run(self, start_page: int = 1, options: RunOptions | None = None) -> SyncStatusOut:
        """
        Run ingestion from `start_page` until the oracle stops it, a fatal
        error occurs, or the stop signal is set.

        Returns:
            The terminal SyncStatus (completed, completed_with_errors, failed
            or paused).
        """
        options = options or RunOptions()
        current = await self.status.get()
        progress = RunProgress(
            run_id=options.run_id or uuid.uuid4().hex,
            start_page=start_page,
            current_page=start_page,
            records_processed=options.records_baseline,
            api_total=current.total_records,
            api_last_page=current.total_pages,
        )
        first_response = True

        logger.info(f"Starting ingestion run {progress.run_id} at page {start_page}")
        if start_page > 1:
            # Everything before start_page is already mirrored
            progress.last_successful_page = start_page - 1
            await self._checkpoint(progress)
        await self.status.update(
            status=SyncState.RUNNING,
            run_id=progress.run_id,
            current_page=start_page,
            records_processed=progress.records_processed,
            error_count=0,
            failed_pages=0,
            error_message=None,
            completed_at=None,
        )

        page = start_page
        while True:
            if self.stop_event.is_set():
                return await self._pause(progress, f"Stopped by request before page {page}")
            if options.max_pages and progress.pages_this_run >= options.max_pages:
                return await self._pause(
                    progress, f"Reached per-run limit of {options.max_pages} pages at page {page}"
                )

            progress.current_page = page
            try:
                result = await self._fetch_with_retry(page, options)
            except PageFetchError as e:
                if e.decision.action is RetryAction.ABORT or not options.continue_on_page_error:
                    return await self._fail(progress, e)
                progress.failed_pages += 1
                progress.error_count += 1
                logger.error(f"Page {page} skipped after {e.attempts} attempts: {e}")
            else:
                if first_response:
                    first_response = False
                    progress.api_last_page, progress.api_total = await self.status.record_totals(
                        result.last_page, result.total
                    )
                await self._process_page(progress, result)

            progress.pages_this_run += 1
            progress.pages_since_checkpoint += 1
            await self.status.update(
                current_page=page,
                records_processed=progress.records_processed,
                error_count=progress.error_count,
                failed_pages=progress.failed_pages,
            )
            if progress.pages_since_checkpoint >= max(1, options.checkpoint_every):
                await self._checkpoint(progress)

            if self.oracle.should_stop(
                page, progress.api_last_page, progress.consecutive_empty_pages
            ):
                return await self._finish(progress)

            page += 1

    async def _fetch_with_retry(self, page: int, options: RunOptions) -> UpstreamPage:
        """Fetch a page, retrying per the classifier's policy."""
        attempts = max(1, options.max_attempts)
        for attempt in range(1, attempts + 1):
            try:
                return await self.client.fetch_page(
                    page, limit=options.page_size, filters=options.filters
                )
            except Exception as e:
                decision = self.classifier.classify(e, attempt)
                if decision.action is RetryAction.ABORT or attempt == attempts:
                    raise PageFetchError(page, e, decision, attempt) from e
                logger.warning(
                    f"Page {page} attempt {attempt}/{attempts} failed "
                    f"[{decision.category.value}]: {e}; retry in {decision.delay_ms}ms"
                )
                await self.sleep(decision.delay_ms / 1000)
        raise AssertionError("unreachable")

    async def _process_page(self, progress: RunProgress, result: UpstreamPage) -> None:
        if not result.items:
            progress.consecutive_empty_pages += 1
            logger.info(
                f"Page {result.page}: empty "
                f"({progress.consecutive_empty_pages}/{self.oracle.empty_page_threshold})"
            )
        else:
            progress.consecutive_empty_pages = 0
            written, failed = await self.writer.upsert_items(result.items)
            progress.records_processed += written
            progress.error_count += failed
            if failed:
                logger.error(f"Page {result.page}: {failed} item(s) failed to upsert")
            logger.info(
                f"Page {result.page}: +{written} items ({progress.records_processed} total)"
            )
        progress.last_successful_page = result.page

    async def _checkpoint(self, progress: RunProgress) -> None:
        """Persist progress up to the last fully processed page."""
        if progress.last_successful_page is None:
            return
        # fsync and rename off the event loop
        await asyncio.to_thread(
            self.checkpoints.record,
            run_id=progress.run_id,
            last_page=progress.last_successful_page,
            total_processed=progress.records_processed,
        )
        progress.pages_since_checkpoint = 0

    async def _finish(self, progress: RunProgress) -> SyncStatusOut:
        stopped_naturally = self.oracle.reached_known_end(
            progress.current_page, progress.api_last_page
        )
        state = self.oracle.final_status(
            progress.records_processed,
            progress.api_total,
            stopped_naturally,
            had_errors=progress.error_count > 0,
        )

        if state is SyncState.RUNNING:
            # Stopped short of the upstream total; leave it resumable.
            return await self._pause(
                progress,
                f"Stopped at page {progress.current_page} with "
                f"{progress.records_processed}/{progress.api_total} records; resume to continue",
            )

        await asyncio.to_thread(self.checkpoints.clear)
        message = None
        if state is SyncState.COMPLETED_WITH_ERRORS:
            message = (
                f"Completed with {progress.error_count} error(s) "
                f"({progress.failed_pages} failed page(s))"
            )
        logger.info(
            f"Ingestion run {progress.run_id} finished: {state.value}, "
            f"{progress.records_processed} records through page {progress.current_page}"
        )
        return await self.status.update(
            status=state,
            error_message=message,
            completed_at=datetime.now(UTC),
        )

    async def _pause(self, progress: RunProgress, reason: str) -> SyncStatusOut:
        await self._checkpoint(progress)
        logger.info(f"Ingestion run {progress.run_id} paused: {reason}")
        return await self.status.update(status=SyncState.PAUSED, error_message=reason)

    async def _fail(self, progress: RunProgress, error: PageFetchError) -> SyncStatusOut:
        await self._checkpoint(progress)
        logger.error(f"Ingestion run {progress.run_id} failed at page {error.page}: {error}")
        return await self.status.update(
            status=SyncState.FAILED,
            current_page=error.page,
            records_processed=progress.records_processed,
            error_count=progress.error_count + 1,
            failed_pages=progress.failed_pages + 1,
            error_message=str(error),
        )
