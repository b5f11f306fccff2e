"""Directory scanning for local and remote trees."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from ..exceptions import RemoteCommandError
from ..utils import quote_remote

if TYPE_CHECKING:
    from ..session import RemoteSession

logger = logging.getLogger(__name__)

# Exit status of the listing command when the remote directory does not exist
REMOTE_DIR_ABSENT_STATUS = 3


@dataclass(frozen=True)
class FileEntry:
    """A file in a scanned tree."""

    relative_path: str
    """Relative path (always using forward slashes)"""

    size: int
    """File size in bytes"""


@dataclass(frozen=True)
class LocalFile(FileEntry):
    """A local file with its absolute path."""

    path: Path = Path()
    """Absolute path to the file"""

    @classmethod
    def from_path(cls, file_path: Path, base_path: Path) -> "LocalFile":
        """Create LocalFile from a path.

        Args:
            file_path: Absolute path to the file
            base_path: Base path for calculating relative paths

        Returns:
            LocalFile instance
        """
        stat = file_path.stat()
        # Use as_posix() to ensure forward slashes on all platforms
        relative_path = file_path.relative_to(base_path).as_posix()
        return cls(relative_path=relative_path, size=stat.st_size, path=file_path)


@dataclass(frozen=True)
class RemoteFile(FileEntry):
    """A file reported by the remote listing."""


def parse_remote_listing(output: str) -> dict[str, RemoteFile]:
    """Parse ``path|size`` lines produced by ``find -printf '%P|%s\\n'``.

    Lines that cannot be parsed are ignored. Paths may themselves contain
    ``|``; the size is always taken from the last field.

    Args:
        output: Raw stdout of the listing command

    Returns:
        Dictionary mapping relative path to RemoteFile
    """
    remote_files: dict[str, RemoteFile] = {}
    for line in output.splitlines():
        if not line.strip():
            continue
        path, sep, size_str = line.rpartition("|")
        if not sep or not path:
            continue
        try:
            size = int(size_str.strip())
        except ValueError:
            logger.debug("Ignoring unparsable listing line: %r", line)
            continue
        relative_path = path.replace("\\", "/")
        remote_files[relative_path] = RemoteFile(relative_path=relative_path, size=size)
    return remote_files


class DirectoryScanner:
    """Scans local and remote directory trees.

    Examples:
        >>> scanner = DirectoryScanner()
        >>> files = scanner.scan_local(Path("/build/site"))
        >>> remote = scanner.scan_remote(session, "/var/www/site")
    """

    def scan_local(
        self, directory: Path, base_path: Optional[Path] = None
    ) -> list[LocalFile]:
        """Recursively scan a local directory.

        Entries are visited in sorted order so the result is deterministic.

        Args:
            directory: Directory to scan
            base_path: Base path for calculating relative paths (defaults to directory)

        Returns:
            List of LocalFile objects
        """
        if base_path is None:
            base_path = directory

        files: list[LocalFile] = []

        try:
            for item in sorted(directory.iterdir()):
                if item.is_file():
                    try:
                        files.append(LocalFile.from_path(item, base_path))
                    except OSError as e:
                        logger.warning("Skipping unreadable file %s: %s", item, e)
                elif item.is_dir():
                    files.extend(self.scan_local(item, base_path))
        except PermissionError as e:
            logger.warning("Permission denied while scanning %s: %s", directory, e)

        return files

    @staticmethod
    def remote_listing_command(remote_dir: str) -> str:
        """Build the single recursive listing command for ``remote_dir``."""
        quoted = quote_remote(remote_dir)
        return (
            f"if [ -d {quoted} ]; then "
            f"find -H {quoted} -type f -printf '%P|%s\\n'; "
            f"else exit {REMOTE_DIR_ABSENT_STATUS}; fi"
        )

    def scan_remote(
        self, session: "RemoteSession", remote_dir: str
    ) -> Optional[dict[str, RemoteFile]]:
        """List all files below ``remote_dir`` with one remote command.

        Args:
            session: Connected remote session
            remote_dir: Remote directory to list

        Returns:
            Dictionary mapping relative path to RemoteFile, or None if the
            directory does not exist

        Raises:
            RemoteCommandError: If the listing fails for any other reason
        """
        command = self.remote_listing_command(remote_dir)
        result = session.run(command, check=False)

        if result.skipped:
            logger.warning("Remote listing skipped, treating %s as empty", remote_dir)
            return {}
        if result.exit_status == REMOTE_DIR_ABSENT_STATUS:
            logger.debug("Remote directory %s does not exist yet", remote_dir)
            return None
        if not result.ok:
            raise RemoteCommandError(
                command, result.exit_status, result.stdout, result.stderr
            )

        return parse_remote_listing(result.stdout)
