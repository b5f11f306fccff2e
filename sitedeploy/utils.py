"""Utility functions for remote paths, shell quoting and formatting."""

import posixpath
import re
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Optional

from .exceptions import DeployValidationError

# =============================================================================
# Constants
# =============================================================================

# Retry configuration for transient connection errors
DEFAULT_MAX_ATTEMPTS: int = 10
DEFAULT_BASE_DELAY: float = 2.0  # seconds
BACKOFF_FACTOR: float = 1.5

# Keep-alive and timeouts for SSH sessions
KEEPALIVE_INTERVAL: int = 10  # seconds
READY_TIMEOUT: float = 60.0  # seconds

# Number of directories passed to a single `mkdir -p` invocation
MKDIR_CHUNK_SIZE: int = 50

# Releases are named by a 14-digit UTC timestamp (YYYYMMDDHHMMSS)
RELEASE_TIMESTAMP_FORMAT: str = "%Y%m%d%H%M%S"
RELEASE_NAME_PATTERN = re.compile(r"^\d{14}$")


# =============================================================================
# Remote path utilities
# =============================================================================


def normalize_remote(path: str) -> str:
    """Normalize a remote POSIX path.

    Backslashes become forward slashes, trailing slashes are stripped.

    Examples:
        >>> normalize_remote("/var/www/site/")
        '/var/www/site'
        >>> normalize_remote("deploy\\\\site")
        'deploy/site'
    """
    normalized = re.sub(r"\\+", "/", str(path))
    stripped = normalized.rstrip("/")
    if not stripped and normalized.startswith("/"):
        return "/"
    return stripped


def join_remote(*parts: str) -> str:
    """Join remote path segments using POSIX semantics.

    Examples:
        >>> join_remote("/var/www", "releases", "20240101000000")
        '/var/www/releases/20240101000000'
    """
    return posixpath.join(*(re.sub(r"\\+", "/", str(p)) for p in parts))


def remote_basename(path: str) -> str:
    """Return the final component of a remote path."""
    return posixpath.basename(normalize_remote(path))


def remote_dirname(path: str) -> str:
    """Return the parent of a remote path."""
    return posixpath.dirname(normalize_remote(path))


def remote_depth(path: str) -> int:
    """Count the non-empty segments of a remote path.

    Examples:
        >>> remote_depth("/var/www/site")
        3
        >>> remote_depth("/")
        0
    """
    return len([p for p in normalize_remote(path).split("/") if p and p != "."])


def ensure_safe_depth(path: str, min_depth: int, action: str) -> None:
    """Refuse destructive operations on shallow remote paths.

    Args:
        path: Remote path about to be removed, renamed or replaced
        min_depth: Minimum number of path segments required
        action: Description of the operation (used in the error message)

    Raises:
        DeployValidationError: If the path is shallower than ``min_depth``
    """
    if remote_depth(path) < min_depth:
        raise DeployValidationError(
            f"Refusing to {action} '{path}': path must have at least "
            f"{min_depth} segment(s) (minRemoteDepth)"
        )


def release_timestamp(now: Optional[datetime] = None) -> str:
    """Return a release name for ``now`` (UTC) in YYYYMMDDHHMMSS form."""
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    return now.strftime(RELEASE_TIMESTAMP_FORMAT)


def is_release_name(name: str) -> bool:
    """Check whether a directory name is a release timestamp."""
    return bool(RELEASE_NAME_PATTERN.match(name))


# =============================================================================
# Shell quoting utilities
# =============================================================================


def escape_double_quoted(value: str) -> str:
    """Escape a value for use inside a double-quoted POSIX shell string.

    Backslash, double quote, dollar and backtick are escaped.

    Examples:
        >>> escape_double_quoted('a"b$c')
        'a\\\\"b\\\\$c'
    """
    return (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("$", "\\$")
        .replace("`", "\\`")
    )


def quote_remote(path: str) -> str:
    """Return ``path`` wrapped in escaped double quotes for remote commands."""
    return f'"{escape_double_quoted(path)}"'


def validate_relative_path(entry: str) -> str:
    """Validate and normalize a relative path supplied by the operator.

    Args:
        entry: Relative path (e.g. a preserveFiles entry)

    Returns:
        Normalized path with forward slashes

    Raises:
        DeployValidationError: If the path is absolute, contains ``..``
            segments or control characters
    """
    # Newlines, NUL and other control characters would break the remote script
    if any(ord(ch) < 32 or ord(ch) == 127 for ch in entry):
        raise DeployValidationError(f"Path contains invalid characters: {entry!r}")

    path = entry.strip().replace("\\", "/")

    if path.startswith("/"):
        raise DeployValidationError(f"Path must be relative, got '{entry}'")

    if ".." in path.split("/"):
        raise DeployValidationError(f"Path must not contain '..', got '{entry}'")

    return path


def normalize_preserve_files(entries: Iterable[str]) -> list[str]:
    """Validate a list of preserve entries, dropping blank ones.

    Raises:
        DeployValidationError: On the first unsafe entry
    """
    normalized: list[str] = []
    for entry in entries:
        if entry is None or not str(entry).strip():
            continue
        normalized.append(validate_relative_path(str(entry)))
    return normalized


def chunked(items: list, size: int) -> Iterable[list]:
    """Yield successive ``size``-sized chunks from ``items``."""
    for start in range(0, len(items), size):
        yield items[start : start + size]


# =============================================================================
# Size formatting utilities
# =============================================================================


def format_size(size_bytes: int) -> str:
    """Format file size in human-readable format.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted size string (e.g., "1.5 MB", "256 B")
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / 1024 / 1024:.1f} MB"
    else:
        return f"{size_bytes / 1024 / 1024 / 1024:.1f} GB"
