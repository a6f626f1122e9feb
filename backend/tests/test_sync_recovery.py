"""Tests for the sync recovery command line tool."""

from unittest.mock import patch

import pytest

import sync_recovery
from inventory_mirror.schemas.sync import SyncState


@pytest.fixture
def cli(orchestrator):
    with patch.object(sync_recovery, "get_orchestrator", return_value=orchestrator):
        yield lambda *argv: sync_recovery.run(sync_recovery.build_parser().parse_args(argv))


class TestParser:
    """Tests for argument parsing."""

    def test_checkpoint_requires_page(self):
        with pytest.raises(SystemExit):
            sync_recovery.build_parser().parse_args(["checkpoint"])

    def test_resume_page_optional(self):
        args = sync_recovery.build_parser().parse_args(["resume"])

        assert args.command == "resume"
        assert args.page is None

    def test_command_required(self):
        with pytest.raises(SystemExit):
            sync_recovery.build_parser().parse_args([])


class TestCommands:
    """Tests for running commands against an orchestrator."""

    @pytest.mark.asyncio
    async def test_status(self, cli, capsys):
        assert await cli("status") == 0

        out = capsys.readouterr().out
        assert "[success]" in out
        assert "idle" in out

    @pytest.mark.asyncio
    async def test_checkpoint_then_resume(self, cli, checkpoint_store, fake_upstream, capsys):
        assert await cli("checkpoint", "--page", "3", "--total-processed", "10") == 0
        assert checkpoint_store.load().last_page_processed == 2
        assert "Checkpoint: run=recovery-" in capsys.readouterr().out

        assert await cli("resume") == 0

        assert fake_upstream.requests[0] == 3
        assert "completed" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_fresh(self, cli, orchestrator):
        assert await cli("fresh") == 0

        status = await orchestrator.status_repo.get()
        assert status.status is SyncState.COMPLETED
        assert status.records_processed == 15

    @pytest.mark.asyncio
    async def test_clear_without_checkpoint_fails(self, cli, capsys):
        assert await cli("clear") == 1
        assert "[no_checkpoint]" in capsys.readouterr().out
