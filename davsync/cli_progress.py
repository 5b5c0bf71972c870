"""CLI progress display for sync runs.

This module provides a Rich-based progress display fed by the
:class:`~davsync.sync.progress.SyncProgressInfo` events of the sync engine.
"""

from typing import Optional

from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
    TransferSpeedColumn,
)

from .sync.progress import SyncProgressEvent, SyncProgressInfo
from .utils import format_size


class TransmissionProgressDisplay:
    """Rich-based progress display of the transfers of a sync run.

    The bar tracks the bytes of the whole run; the text columns show the
    file being transferred and how many files are done.
    """

    def __init__(self) -> None:
        self._progress: Optional[Progress] = None
        self._task: Optional[TaskID] = None

    @staticmethod
    def _format_files(info: SyncProgressInfo) -> str:
        """Format file and byte counters.

        Returns:
            Formatted string like "2/5 files, 1.5 MB/10.0 MB"
        """
        return (
            f"{info.files_done}/{info.files_total} files, "
            f"{format_size(info.bytes_done)}/{format_size(info.bytes_total)}"
        )

    def handle_event(self, info: SyncProgressInfo) -> None:
        """Update the display from a progress event.

        Args:
            info: Progress information
        """
        if self._progress is None or self._task is None:
            return

        if info.event == SyncProgressEvent.SYNC_START:
            self._progress.update(
                self._task,
                description="Syncing",
                total=info.bytes_total or None,
                completed=0,
                files_info=self._format_files(info),
            )

        elif info.event == SyncProgressEvent.FILE_START:
            self._progress.update(
                self._task,
                description=info.path,
                files_info=self._format_files(info),
            )

        elif info.event in (
            SyncProgressEvent.FILE_PROGRESS,
            SyncProgressEvent.FILE_COMPLETE,
        ):
            self._progress.update(
                self._task,
                completed=info.bytes_done,
                files_info=self._format_files(info),
            )

        elif info.event == SyncProgressEvent.SYNC_COMPLETE:
            self._progress.update(
                self._task,
                description="Sync complete",
                completed=info.bytes_done,
                files_info=self._format_files(info),
            )

    def __enter__(self) -> "TransmissionProgressDisplay":
        """Enter context manager - start progress display."""
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            TextColumn("[cyan]{task.fields[files_info]}"),
            TransferSpeedColumn(),
            TimeElapsedColumn(),
            refresh_per_second=4,
        )
        self._progress.__enter__()
        self._task = self._progress.add_task(
            "Preparing sync...",
            total=None,
            files_info="0/0 files, 0 B/0 B",
        )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit context manager - stop progress display."""
        if self._progress is not None:
            self._progress.__exit__(exc_type, exc_val, exc_tb)
            self._progress = None
            self._task = None
