"""SyncStatusRecord model holding the single in-place sync status row."""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from inventory_mirror.database import Base


class SyncStatusRecord(Base):
    """
    Persisted progress of the ingestion run for one sync target.

    There is exactly one row per target, updated in place. UI layers read it
    for progress display; correctness never depends on it except for the
    single-active-run guard.
    """

    __tablename__ = "sync_status"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, server_default="idle")
    run_id: Mapped[str | None] = mapped_column(String(64))

    current_page: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    records_processed: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")

    # Discovered from upstream metadata; never downgraded
    total_pages: Mapped[int | None] = mapped_column(Integer)
    total_records: Mapped[int | None] = mapped_column(Integer)

    error_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    failed_pages: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    error_message: Mapped[str | None] = mapped_column(Text)

    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_activity_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<SyncStatusRecord {self.id}: {self.status} page={self.current_page}>"
