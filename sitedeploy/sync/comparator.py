"""Change detection between a local tree and a remote target directory."""

import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from .scanner import DirectoryScanner, LocalFile, RemoteFile

if TYPE_CHECKING:
    from ..session import RemoteSession

logger = logging.getLogger(__name__)


class DiffAction(str, Enum):
    """Outcome of comparing one local file against the remote listing."""

    UPLOAD = "upload"
    """File is missing remotely or has a different size"""

    SKIP = "skip"
    """File has the same size remotely"""


@dataclass
class DiffDecision:
    """Represents a decision about one local file."""

    action: DiffAction
    """Action to take"""

    reason: str
    """Human-readable reason for this decision"""

    local_file: LocalFile
    """Local file"""

    remote_file: Optional[RemoteFile]
    """Remote file (if exists)"""


@dataclass
class ChangeSet:
    """Ordered local files that need to be transferred.

    Order follows the local scan order. Computed once per run and consumed
    once by the transfer strategy.
    """

    files: list[LocalFile] = field(default_factory=list)
    local_count: int = 0
    """Number of files in the local tree"""

    remote_count: int = 0
    """Number of files found in the remote target"""

    @property
    def total_size(self) -> int:
        """Cumulative size of all files in bytes."""
        return sum(f.size for f in self.files)

    @property
    def relative_paths(self) -> list[str]:
        return [f.relative_path for f in self.files]

    def __len__(self) -> int:
        return len(self.files)

    def __iter__(self) -> Iterator[LocalFile]:
        return iter(self.files)

    def __bool__(self) -> bool:
        return bool(self.files)


class FileComparator:
    """Compares local files against a remote listing by size only.

    Content changes that keep the file size identical are not detected.
    """

    def compare_files(
        self,
        local_files: list[LocalFile],
        remote_files: Mapping[str, RemoteFile],
    ) -> list[DiffDecision]:
        """Decide for each local file whether it must be uploaded.

        Args:
            local_files: Local files in scan order
            remote_files: Dictionary mapping relative_path to RemoteFile

        Returns:
            One DiffDecision per local file, in the same order
        """
        decisions: list[DiffDecision] = []

        for local_file in local_files:
            remote_file = remote_files.get(local_file.relative_path)

            if remote_file is None:
                decision = DiffDecision(
                    action=DiffAction.UPLOAD,
                    reason="New local file",
                    local_file=local_file,
                    remote_file=None,
                )
            elif remote_file.size != local_file.size:
                decision = DiffDecision(
                    action=DiffAction.UPLOAD,
                    reason=(
                        f"Size differs (local {local_file.size} vs "
                        f"remote {remote_file.size})"
                    ),
                    local_file=local_file,
                    remote_file=remote_file,
                )
            else:
                decision = DiffDecision(
                    action=DiffAction.SKIP,
                    reason="Files are identical (same size)",
                    local_file=local_file,
                    remote_file=remote_file,
                )

            decisions.append(decision)

        return decisions


class DiffEngine:
    """Computes the minimal change set for a deployment."""

    def __init__(
        self,
        scanner: Optional[DirectoryScanner] = None,
        comparator: Optional[FileComparator] = None,
    ):
        self.scanner = scanner or DirectoryScanner()
        self.comparator = comparator or FileComparator()

    def compute_change_set(
        self, local_dir: Path, remote_target_dir: str, session: "RemoteSession"
    ) -> ChangeSet:
        """Determine which local files need to move to ``remote_target_dir``.

        A missing remote directory is treated as empty (first deploy, or a
        fresh release under the symlink strategy).

        Args:
            local_dir: Local directory tree
            remote_target_dir: Remote directory the files will be uploaded to
            session: Connected remote session

        Returns:
            ChangeSet in local scan order

        Raises:
            RemoteCommandError: If the remote listing fails
        """
        remote_files = self.scanner.scan_remote(session, remote_target_dir)
        if remote_files is None:
            remote_files = {}

        local_files = self.scanner.scan_local(Path(local_dir))
        decisions = self.comparator.compare_files(local_files, remote_files)

        for decision in decisions:
            logger.debug(
                "%s: %s (%s)",
                decision.local_file.relative_path,
                decision.action.value,
                decision.reason,
            )

        change_set = ChangeSet(
            files=[d.local_file for d in decisions if d.action == DiffAction.UPLOAD],
            local_count=len(local_files),
            remote_count=len(remote_files),
        )
        logger.info(
            "Remote: %d, Local: %d, Changed: %d",
            change_set.remote_count,
            change_set.local_count,
            len(change_set),
        )
        return change_set
