"""Persistence of the single in-place SyncStatus row."""

import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from inventory_mirror.config import get_settings
from inventory_mirror.models import SyncStatusRecord
from inventory_mirror.schemas.sync import SyncState, SyncStatusOut

logger = logging.getLogger(__name__)
settings = get_settings()

StatusListener = Callable[[SyncStatusOut], Awaitable[None]]


def dialect_insert(session: AsyncSession):
    """`insert()` supporting ON CONFLICT for the session's dialect."""
    if session.get_bind().dialect.name == "sqlite":
        return sqlite_insert
    return pg_insert


class SyncStatusRepository:
    """
    Reads and writes the status row for one sync target.

    Every write stamps `last_activity_at` and notifies listeners (progress
    display only; listener failures never affect the sync).
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        target_id: str = settings.sync_target_id,
    ):
        self.session_factory = session_factory
        self.target_id = target_id
        self.listeners: list[StatusListener] = []

    def add_listener(self, listener: StatusListener) -> None:
        self.listeners.append(listener)

    async def get(self) -> SyncStatusOut:
        """Current status, creating an `idle` row on first use."""
        async with self.session_factory() as session:
            row = await session.get(SyncStatusRecord, self.target_id)
            if row is None:
                row = SyncStatusRecord(
                    id=self.target_id,
                    status=SyncState.IDLE.value,
                    current_page=0,
                    records_processed=0,
                    error_count=0,
                    failed_pages=0,
                    last_activity_at=datetime.now(UTC),
                )
                session.add(row)
                await session.commit()
            return SyncStatusOut.model_validate(row)

    async def update(self, **values: Any) -> SyncStatusOut:
        """Upsert the given columns into the status row."""
        if isinstance(values.get("status"), SyncState):
            values["status"] = values["status"].value
        values["last_activity_at"] = datetime.now(UTC)

        async with self.session_factory() as session:
            insert = dialect_insert(session)
            stmt = insert(SyncStatusRecord).values(id=self.target_id, **values)
            stmt = stmt.on_conflict_do_update(index_elements=["id"], set_=values)
            await session.execute(stmt)
            await session.commit()

            result = await session.execute(
                select(SyncStatusRecord)
                .where(SyncStatusRecord.id == self.target_id)
                .execution_options(populate_existing=True)
            )
            status = SyncStatusOut.model_validate(result.scalar_one())

        await self._notify(status)
        return status

    async def record_totals(
        self, total_pages: int | None, total_records: int | None
    ) -> tuple[int | None, int | None]:
        """
        Store discovered upstream totals, never replacing a larger value.

        Returns the totals now in effect.
        """
        current = await self.get()
        pages = _max_known(current.total_pages, total_pages)
        records = _max_known(current.total_records, total_records)
        if (pages, records) != (current.total_pages, current.total_records):
            await self.update(total_pages=pages, total_records=records)
            logger.info(f"Discovered upstream totals: pages={pages}, records={records}")
        return pages, records

    async def _notify(self, status: SyncStatusOut) -> None:
        for listener in self.listeners:
            try:
                await listener(status)
            except Exception as e:
                logger.warning(f"Sync status listener failed: {e}")


def _max_known(current: int | None, new: int | None) -> int | None:
    if current is None:
        return new
    if new is None:
        return current
    return max(current, new)
