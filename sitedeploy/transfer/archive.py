"""Local gzip tar archives of change-set files."""

import logging
import os
import tarfile
import tempfile
from collections.abc import Iterable
from pathlib import Path

from ..exceptions import DeployTransferError
from ..sync.scanner import LocalFile
from ..utils import quote_remote

logger = logging.getLogger(__name__)


def build_archive(
    files: Iterable[LocalFile], local_dir: Path, prefix: str = "deploy-"
) -> Path:
    """Write a gzip-compressed tar of ``files`` to a unique temporary file.

    Entry names are the files' POSIX relative paths. The caller owns the
    returned file and must delete it.

    Args:
        files: Files to pack
        local_dir: Directory the relative paths are resolved against
        prefix: Temporary file name prefix

    Returns:
        Path to the archive

    Raises:
        DeployTransferError: If a file cannot be read or the archive cannot
            be written
    """
    try:
        fd, name = tempfile.mkstemp(prefix=prefix, suffix=".tar.gz")
    except OSError as e:
        raise DeployTransferError(f"Could not create local archive: {e}") from e
    os.close(fd)
    archive_path = Path(name)

    count = 0
    try:
        with tarfile.open(archive_path, "w:gz", dereference=True) as tar:
            for local_file in files:
                tar.add(
                    str(Path(local_dir) / local_file.relative_path),
                    arcname=local_file.relative_path,
                    recursive=False,
                )
                count += 1
        size = archive_path.stat().st_size
    except (OSError, tarfile.TarError) as e:
        archive_path.unlink(missing_ok=True)
        raise DeployTransferError(f"Could not build archive {archive_path}: {e}") from e
    except BaseException:
        archive_path.unlink(missing_ok=True)
        raise

    logger.debug("Packed %d file(s) into %s (%d bytes)", count, archive_path, size)
    return archive_path


def extract_command(archive: str, target_dir: str) -> str:
    """Build the remote command extracting ``archive`` into ``target_dir``.

    The archive is removed once extracted. A missing archive means an earlier
    attempt already extracted it, so running the command again succeeds
    without doing anything.
    """
    quoted = quote_remote(archive)
    return (
        f"if [ -f {quoted} ]; then "
        f"tar -xzf {quoted} -C {quote_remote(target_dir)} && rm -f -- {quoted}; fi"
    )
