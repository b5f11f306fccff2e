"""Per-file SFTP transfer."""

import logging
import posixpath
from pathlib import Path
from typing import TYPE_CHECKING

from ..sync.comparator import ChangeSet
from ..utils import MKDIR_CHUNK_SIZE, chunked, join_remote, quote_remote
from .base import TransferStats, TransferStrategy

if TYPE_CHECKING:
    from ..profile import DeploymentProfile
    from ..session import RemoteSession

logger = logging.getLogger(__name__)


class DirectSftpTransfer(TransferStrategy):
    """Uploads each changed file individually over SFTP."""

    name = "sftp"

    @staticmethod
    def required_directories(change_set: ChangeSet) -> list[str]:
        """Relative parent directories implied by the change set.

        Sorted shallow-first so parents precede children.
        """
        dirs = {
            posixpath.dirname(f.relative_path)
            for f in change_set
            if posixpath.dirname(f.relative_path)
        }
        return sorted(dirs, key=lambda d: (d.count("/"), d))

    def ensure_directories(
        self, change_set: ChangeSet, target_dir: str, session: "RemoteSession"
    ) -> int:
        """Create all remote parent directories with chunked ``mkdir -p`` calls.

        Returns:
            Number of mkdir commands issued
        """
        dirs = self.required_directories(change_set)
        commands = 0
        for chunk in chunked(dirs, MKDIR_CHUNK_SIZE):
            paths = " ".join(quote_remote(join_remote(target_dir, d)) for d in chunk)
            session.run(f"mkdir -p -- {paths}")
            commands += 1
        return commands

    def upload(
        self,
        change_set: ChangeSet,
        local_dir: Path,
        target_dir: str,
        session: "RemoteSession",
        profile: "DeploymentProfile",
    ) -> TransferStats:
        stats = TransferStats()
        if not change_set:
            return stats

        logger.info("Uploading %d file(s) via SFTP...", len(change_set))
        self.ensure_directories(change_set, target_dir, session)

        self.progress.start(len(change_set), change_set.total_size)
        for local_file in change_set:
            remote_path = join_remote(target_dir, local_file.relative_path)
            session.put(
                Path(local_dir) / local_file.relative_path,
                remote_path,
                callback=lambda sent, total, label=local_file.relative_path: (
                    self.progress.bytes_sent(label, sent, total)
                ),
            )
            self.progress.file_uploaded(local_file.relative_path, local_file.size)
            stats.files += 1
            stats.bytes += local_file.size
        self.progress.finish()

        logger.info("Upload complete.")
        return stats
