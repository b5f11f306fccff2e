"""CLI progress display for transfers.

Renders TransferProgressTracker events with a rich Progress bar.
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
)

from .progress import (
    TransferProgressEvent,
    TransferProgressInfo,
    TransferProgressTracker,
)
from .utils import format_size


class TransferProgressDisplay:
    """Rich-based progress display for a deployment transfer.

    Shows overall completed bytes, the file count and the stage of the most
    recently active batch.
    """

    def __init__(self) -> None:
        self._progress: Optional[Progress] = None
        self._task: Optional[TaskID] = None

    def create_tracker(self) -> TransferProgressTracker:
        """Create a TransferProgressTracker that updates this display."""
        return TransferProgressTracker(callback=self._handle_event)

    @staticmethod
    def _format_totals(info: TransferProgressInfo) -> str:
        files = f"{info.files_done}/{info.total_files} files"
        size = f"{format_size(info.bytes_done)}/{format_size(info.total_bytes)}"
        if info.batches_total:
            return f"{files}, {size}, batch {info.batches_done}/{info.batches_total}"
        return f"{files}, {size}"

    def _handle_event(self, info: TransferProgressInfo) -> None:
        if self._progress is None or self._task is None:
            return

        if info.event == TransferProgressEvent.TRANSFER_STARTED:
            self._progress.update(
                self._task,
                description="Uploading",
                total=info.total_bytes or None,
                completed=0,
                totals=self._format_totals(info),
            )
        elif info.event == TransferProgressEvent.BATCH_STAGE:
            self._progress.update(
                self._task, description=f"{info.label}: {info.stage}"
            )
        elif info.event in (
            TransferProgressEvent.FILE_UPLOADED,
            TransferProgressEvent.BATCH_FINISHED,
        ):
            self._progress.update(
                self._task,
                completed=info.bytes_done,
                totals=self._format_totals(info),
            )
        elif info.event == TransferProgressEvent.TRANSFER_FINISHED:
            self._progress.update(
                self._task,
                description="Upload complete",
                completed=info.bytes_done,
                totals=self._format_totals(info),
            )

    def __enter__(self) -> "TransferProgressDisplay":
        """Enter context manager - start progress display."""
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            TextColumn("[cyan]{task.fields[totals]}"),
            TimeElapsedColumn(),
            refresh_per_second=4,
            transient=False,
        )
        self._progress.__enter__()
        self._task = self._progress.add_task(
            "Preparing deployment...", total=None, totals="0/0 files"
        )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit context manager - stop progress display."""
        if self._progress is not None:
            self._progress.__exit__(exc_type, exc_val, exc_tb)
            self._progress = None
            self._task = None
