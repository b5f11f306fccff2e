"""Batched tar-archive transfer with a worker pool.

The change set is packed into size-bounded batches. Up to ``concurrency``
workers drain a shared queue of batches; each worker owns its own remote
session and, per batch, builds a local archive, uploads it into the target
directory, extracts it remotely and removes it. Batches hold disjoint files,
so they may complete in any order.
"""

import logging
import queue
import random
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Optional

from ..progress import TransferProgressTracker
from ..session import SessionFactory
from ..sync.comparator import ChangeSet
from ..utils import format_size, join_remote
from .archive import build_archive, extract_command
from .base import TransferStats, TransferStrategy
from .batching import Batch, create_batches

if TYPE_CHECKING:
    from ..profile import DeploymentProfile
    from ..session import RemoteSession

logger = logging.getLogger(__name__)

# Randomized pause (seconds) before each extraction when workers run in parallel
EXTRACT_JITTER: tuple[float, float] = (0.2, 0.8)


class TarBatchTransfer(TransferStrategy):
    """Pushes gzip tar batches and extracts them on the target."""

    name = "tar"

    def __init__(
        self,
        session_factory: Optional[SessionFactory] = None,
        progress: Optional[TransferProgressTracker] = None,
        sleep: Callable[[float], None] = time.sleep,
        jitter: tuple[float, float] = EXTRACT_JITTER,
    ):
        """Initialize tar transfer.

        Args:
            session_factory: Opens one session per parallel worker
                (defaults to a factory built from the profile)
            progress: Progress tracker
            sleep: Sleep function (injectable for tests)
            jitter: Range of the randomized pre-extraction delay
        """
        super().__init__(progress)
        self.session_factory = session_factory
        self._sleep = sleep
        self._jitter = jitter

    def upload(
        self,
        change_set: ChangeSet,
        local_dir: Path,
        target_dir: str,
        session: "RemoteSession",
        profile: "DeploymentProfile",
    ) -> TransferStats:
        batches = create_batches(change_set.files, profile.batch_size_bytes)
        if not batches:
            return TransferStats()

        limit = (
            format_size(profile.batch_size_bytes)
            if profile.batch_size_bytes > 0
            else "none (single archive)"
        )
        workers = min(profile.concurrency, len(batches))
        logger.info(
            "Found %d file(s) (%s). Split into %d batch(es) (limit: %s), "
            "%d worker(s).",
            len(change_set),
            format_size(change_set.total_size),
            len(batches),
            limit,
            workers,
        )

        session.makedirs(target_dir)

        pending: "queue.Queue[tuple[int, Batch]]" = queue.Queue()
        for index, batch in enumerate(batches):
            pending.put((index, batch))
        stop = threading.Event()

        self.progress.start(len(change_set), change_set.total_size, len(batches))

        if workers == 1:
            # A single worker can reuse the caller's session
            self._drain(
                pending, stop, session, local_dir, target_dir, len(batches), False
            )
        else:
            factory = self.session_factory or SessionFactory(
                profile.connection, policy=session.policy
            )
            self._run_pool(
                factory, workers, pending, stop, local_dir, target_dir, len(batches)
            )

        self.progress.finish()
        return TransferStats(
            files=len(change_set), bytes=change_set.total_size, batches=len(batches)
        )

    def _run_pool(
        self,
        factory: SessionFactory,
        workers: int,
        pending: "queue.Queue[tuple[int, Batch]]",
        stop: threading.Event,
        local_dir: Path,
        target_dir: str,
        total: int,
    ) -> None:
        errors: list[BaseException] = []

        with ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="tar-worker"
        ) as executor:
            futures = [
                executor.submit(
                    self._worker, factory, pending, stop, local_dir, target_dir, total
                )
                for _ in range(workers)
            ]
            for future in as_completed(futures):
                error = future.exception()
                if error is not None:
                    stop.set()
                    errors.append(error)

        if errors:
            raise errors[0]

    def _worker(
        self,
        factory: SessionFactory,
        pending: "queue.Queue[tuple[int, Batch]]",
        stop: threading.Event,
        local_dir: Path,
        target_dir: str,
        total: int,
    ) -> None:
        with factory.open() as session:
            self._drain(pending, stop, session, local_dir, target_dir, total, True)

    def _drain(
        self,
        pending: "queue.Queue[tuple[int, Batch]]",
        stop: threading.Event,
        session: "RemoteSession",
        local_dir: Path,
        target_dir: str,
        total: int,
        parallel: bool,
    ) -> None:
        while not stop.is_set():
            try:
                index, batch = pending.get_nowait()
            except queue.Empty:
                return
            try:
                self.process_batch(
                    session, batch, index, total, local_dir, target_dir, parallel
                )
            except BaseException:
                stop.set()
                raise

    def process_batch(
        self,
        session: "RemoteSession",
        batch: Batch,
        index: int,
        total: int,
        local_dir: Path,
        target_dir: str,
        parallel: bool = False,
    ) -> None:
        """Compress, upload, extract and clean up one batch."""
        label = f"Batch {index + 1}/{total}"
        self.progress.batch_started(label)

        self.progress.batch_stage(label, f"compressing {len(batch)} file(s)")
        archive = build_archive(
            batch.files, local_dir, prefix=f"deploy-batch-{index + 1}-"
        )
        remote_archive = join_remote(
            target_dir, f".deploy-batch-{index + 1}-{uuid.uuid4().hex}.tar.gz"
        )

        try:
            archive_size = archive.stat().st_size
            self.progress.batch_stage(label, f"uploading {format_size(archive_size)}")
            session.put(
                archive,
                remote_archive,
                callback=lambda sent, size: self.progress.bytes_sent(label, sent, size),
            )
        finally:
            archive.unlink(missing_ok=True)

        if parallel:
            self._sleep(random.uniform(*self._jitter))

        self.progress.batch_stage(label, "extracting")
        session.run(extract_command(remote_archive, target_dir))

        logger.info(
            "%s done (%d file(s), %s)", label, len(batch), format_size(batch.size)
        )
        self.progress.batch_finished(label, len(batch), batch.size)
