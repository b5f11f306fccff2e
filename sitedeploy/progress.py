"""Progress tracking for transfers.

Transfer strategies report events to a :class:`TransferProgressTracker`, which
aggregates them and forwards a :class:`TransferProgressInfo` snapshot to a
callback. The tracker is safe to use from concurrent tar workers.
"""

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional


class TransferProgressEvent(str, Enum):
    """Kinds of progress events."""

    TRANSFER_STARTED = "transfer_started"
    BATCH_STARTED = "batch_started"
    BATCH_STAGE = "batch_stage"
    BATCH_FINISHED = "batch_finished"
    FILE_UPLOADED = "file_uploaded"
    BYTES_SENT = "bytes_sent"
    TRANSFER_FINISHED = "transfer_finished"


@dataclass
class TransferProgressInfo:
    """Snapshot of transfer progress passed to callbacks."""

    event: TransferProgressEvent
    total_files: int = 0
    total_bytes: int = 0
    files_done: int = 0
    bytes_done: int = 0
    batches_total: int = 0
    batches_done: int = 0
    label: str = ""
    """Batch label or relative path the event refers to"""

    stage: str = ""
    """Current batch stage (compressing, uploading, extracting)"""


class TransferProgressTracker:
    """Thread-safe aggregator of transfer progress events."""

    def __init__(
        self, callback: Optional[Callable[[TransferProgressInfo], None]] = None
    ):
        self._callback = callback
        self._lock = threading.Lock()
        self.total_files = 0
        self.total_bytes = 0
        self.files_done = 0
        self.bytes_done = 0
        self.batches_total = 0
        self.batches_done = 0

    def _emit(
        self, event: TransferProgressEvent, label: str = "", stage: str = ""
    ) -> None:
        # Caller holds the lock
        if self._callback is None:
            return
        self._callback(
            TransferProgressInfo(
                event=event,
                total_files=self.total_files,
                total_bytes=self.total_bytes,
                files_done=self.files_done,
                bytes_done=self.bytes_done,
                batches_total=self.batches_total,
                batches_done=self.batches_done,
                label=label,
                stage=stage,
            )
        )

    def start(self, total_files: int, total_bytes: int, batches: int = 0) -> None:
        with self._lock:
            self.total_files = total_files
            self.total_bytes = total_bytes
            self.batches_total = batches
            self._emit(TransferProgressEvent.TRANSFER_STARTED)

    def batch_started(self, label: str) -> None:
        with self._lock:
            self._emit(TransferProgressEvent.BATCH_STARTED, label=label)

    def batch_stage(self, label: str, stage: str) -> None:
        with self._lock:
            self._emit(TransferProgressEvent.BATCH_STAGE, label=label, stage=stage)

    def batch_finished(self, label: str, files: int, size: int) -> None:
        with self._lock:
            self.batches_done += 1
            self.files_done += files
            self.bytes_done += size
            self._emit(TransferProgressEvent.BATCH_FINISHED, label=label)

    def file_uploaded(self, relative_path: str, size: int) -> None:
        with self._lock:
            self.files_done += 1
            self.bytes_done += size
            self._emit(TransferProgressEvent.FILE_UPLOADED, label=relative_path)

    def bytes_sent(self, label: str, sent: int, total: int) -> None:
        """Report raw byte progress of a single put (not added to totals)."""
        with self._lock:
            self._emit(
                TransferProgressEvent.BYTES_SENT, label=label, stage=f"{sent}/{total}"
            )

    def finish(self) -> None:
        with self._lock:
            self._emit(TransferProgressEvent.TRANSFER_FINISHED)
