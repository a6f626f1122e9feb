"""Decides when paging through the upstream has reached the true end."""

from inventory_mirror.config import Settings, get_settings
from inventory_mirror.schemas.sync import SyncState


class CompletionOracle:
    """
    Stop condition and terminal status for an ingestion run.

    Two independent end signals are combined: a known last page from the
    upstream metadata (plus a small buffer for off-by-few pagination), and a
    long streak of empty pages. Counting empty pages alone is unreliable
    because upstream pagination can have holes.
    """

    def __init__(
        self,
        page_buffer: int | None = None,
        empty_page_threshold: int | None = None,
        completion_ratio: float | None = None,
        settings: Settings | None = None,
    ):
        settings = settings or get_settings()
        self.page_buffer = settings.completion_page_buffer if page_buffer is None else page_buffer
        self.empty_page_threshold = (
            settings.empty_page_threshold if empty_page_threshold is None else empty_page_threshold
        )
        self.completion_ratio = (
            settings.completion_ratio if completion_ratio is None else completion_ratio
        )

    def reached_known_end(self, current_page: int, api_last_page: int | None) -> bool:
        return api_last_page is not None and current_page > api_last_page + self.page_buffer

    def should_stop(
        self,
        current_page: int,
        api_last_page: int | None,
        consecutive_empty_pages: int,
    ) -> bool:
        return (
            self.reached_known_end(current_page, api_last_page)
            or consecutive_empty_pages >= self.empty_page_threshold
        )

    def final_status(
        self,
        records_processed: int,
        api_total: int | None,
        stopped_naturally: bool,
        had_errors: bool = False,
    ) -> SyncState:
        """
        Terminal status once the loop has stopped.

        `stopped_naturally` means the known-end condition fired. Without a
        known total, an empty-page streak is the only end signal there is, so
        it also counts as completion. `RUNNING` means the run stopped short of
        the upstream total and must be resumed.
        """
        if stopped_naturally:
            return SyncState.COMPLETED
        if api_total is None:
            return SyncState.COMPLETED_WITH_ERRORS if had_errors else SyncState.COMPLETED
        if records_processed >= self.completion_ratio * api_total:
            return SyncState.COMPLETED
        if had_errors:
            return SyncState.COMPLETED_WITH_ERRORS
        return SyncState.RUNNING

    @staticmethod
    def progress_percent(records_processed: int, api_total: int | None) -> float | None:
        if not api_total:
            return None
        return records_processed / api_total * 100
