"""Tests for the JSON checkpoint store."""

import json
from datetime import UTC, datetime, timedelta

import pytest

from inventory_mirror.schemas.sync import Checkpoint
from inventory_mirror.services.checkpoint_store import CheckpointStore


def epoch_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


@pytest.fixture
def store(tmp_path) -> CheckpointStore:
    return CheckpointStore(tmp_path / "checkpoint.json", max_age=timedelta(hours=24))


class TestCheckpointStore:
    """Tests for CheckpointStore."""

    def test_load_missing(self, store):
        assert store.load() is None
        assert store.load_valid() is None

    def test_record_writes_camel_case_record(self, store):
        checkpoint = store.record("run-1", last_page=12, total_processed=2400)

        on_disk = json.loads(store.path.read_text())
        assert on_disk["runId"] == "run-1"
        assert on_disk["lastPage"] == 12
        assert on_disk["totalProcessed"] == 2400
        assert on_disk["startTime"] == checkpoint.start_time
        assert on_disk["lastUpdateTime"] == checkpoint.last_update_time

        loaded = store.load()
        assert loaded == checkpoint

    def test_reads_externally_written_record(self, store):
        now = epoch_ms(datetime.now(UTC))
        store.path.write_text(
            json.dumps(
                {
                    "runId": "abc",
                    "lastPage": 3,
                    "totalProcessed": 600,
                    "startTime": now,
                    "lastUpdateTime": now,
                }
            )
        )

        checkpoint = store.load_valid()

        assert checkpoint is not None
        assert checkpoint.last_page_processed == 3
        assert checkpoint.total_records_processed == 600

    def test_stale_checkpoint_is_not_valid(self, store, sample_datetime):
        store.save(
            Checkpoint(
                run_id="old",
                last_page_processed=50,
                total_records_processed=10_000,
                start_time=epoch_ms(sample_datetime - timedelta(hours=30)),
                last_update_time=epoch_ms(sample_datetime - timedelta(hours=25)),
            )
        )

        assert store.load() is not None
        assert store.load_valid(now=sample_datetime) is None
        assert store.load_valid(now=sample_datetime - timedelta(hours=2)) is not None

    def test_record_keeps_start_time_within_run(self, store):
        first = store.record("run-1", last_page=5, total_processed=1000, start_time=1_000)
        second = store.record("run-1", last_page=10, total_processed=2000)
        other = store.record("run-2", last_page=1, total_processed=200)

        assert first.start_time == 1_000
        assert second.start_time == 1_000
        assert other.start_time != 1_000

    def test_unreadable_checkpoint_is_ignored(self, store):
        store.path.write_text("{not json")

        assert store.load() is None

    def test_clear(self, store):
        assert store.clear() is False

        store.record("run-1", last_page=1, total_processed=200)
        assert store.clear() is True
        assert store.load() is None
        assert not store.path.exists()

    def test_save_leaves_no_temp_files(self, store, tmp_path):
        for page in range(1, 4):
            store.record("run-1", last_page=page, total_processed=page * 200)

        assert [p.name for p in tmp_path.iterdir()] == ["checkpoint.json"]

    def test_failed_write_keeps_previous_record(self, store, tmp_path, monkeypatch):
        store.record("run-1", last_page=4, total_processed=800)

        def broken_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr("inventory_mirror.services.checkpoint_store.os.replace", broken_replace)

        with pytest.raises(OSError):
            store.record("run-1", last_page=5, total_processed=1000)

        assert store.load().last_page_processed == 4
        assert [p.name for p in tmp_path.iterdir()] == ["checkpoint.json"]

    def test_describe(self, store):
        checkpoint = store.record("run-7", last_page=9, total_processed=1800)

        text = store.describe(checkpoint)

        assert "run=run-7" in text
        assert "last_page=9" in text
        assert "processed=1800" in text
