"""Durable JSON checkpoint of ingestion progress."""

import logging
import os
import tempfile
from datetime import UTC, datetime, timedelta
from pathlib import Path

from pydantic import ValidationError

from inventory_mirror.config import get_settings
from inventory_mirror.schemas.sync import Checkpoint, now_ms

logger = logging.getLogger(__name__)
settings = get_settings()


class CheckpointStore:
    """
    Single JSON checkpoint record for the active sync target.

    Writes go to a temp file in the same directory followed by `os.replace`,
    so readers see either the previous record or the new one, never a torn
    write.
    """

    def __init__(
        self,
        path: str | Path = settings.checkpoint_path,
        max_age: timedelta = timedelta(hours=settings.checkpoint_max_age_hours),
    ):
        self.path = Path(path)
        self.max_age = max_age

    def load(self) -> Checkpoint | None:
        """Read the checkpoint, or None when absent or unreadable."""
        if not self.path.exists():
            return None
        try:
            return Checkpoint.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable checkpoint {self.path}: {e}")
            return None

    def load_valid(self, now: datetime | None = None) -> Checkpoint | None:
        """Read the checkpoint only if it is recent enough to resume from."""
        checkpoint = self.load()
        if checkpoint is None:
            return None
        if not checkpoint.is_valid(self.max_age, now):
            hours = checkpoint.age(now).total_seconds() / 3600
            logger.warning(
                f"Checkpoint {checkpoint.run_id} is {hours:.1f}h old; too stale to resume"
            )
            return None
        return checkpoint

    def save(self, checkpoint: Checkpoint) -> None:
        """Atomically overwrite the checkpoint record."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(checkpoint.model_dump_json(by_alias=True, indent=2))
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug(
            f"Checkpoint saved: run={checkpoint.run_id} page={checkpoint.last_page_processed}"
        )

    def record(
        self,
        run_id: str,
        last_page: int,
        total_processed: int,
        start_time: int | None = None,
    ) -> Checkpoint:
        """Build and persist a checkpoint stamped with the current time."""
        now = now_ms()
        existing = self.load()
        if start_time is None:
            start_time = (
                existing.start_time if existing and existing.run_id == run_id else now
            )
        checkpoint = Checkpoint(
            run_id=run_id,
            last_page_processed=last_page,
            total_records_processed=total_processed,
            start_time=start_time,
            last_update_time=now,
        )
        self.save(checkpoint)
        return checkpoint

    def clear(self) -> bool:
        """Delete the checkpoint. Returns whether one existed."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        logger.info(f"Checkpoint cleared: {self.path}")
        return True

    def describe(self, checkpoint: Checkpoint) -> str:
        age_hours = checkpoint.age(datetime.now(UTC)).total_seconds() / 3600
        return (
            f"run={checkpoint.run_id} last_page={checkpoint.last_page_processed} "
            f"processed={checkpoint.total_records_processed} age={age_hours:.1f}h"
        )
