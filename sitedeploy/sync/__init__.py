"""Change detection for deployments: scanning and size-based diffing."""

from .comparator import ChangeSet, DiffAction, DiffDecision, DiffEngine, FileComparator
from .scanner import (
    DirectoryScanner,
    FileEntry,
    LocalFile,
    RemoteFile,
    parse_remote_listing,
)

__all__ = [
    "DiffEngine",
    "ChangeSet",
    "FileComparator",
    "DiffAction",
    "DiffDecision",
    "DirectoryScanner",
    "FileEntry",
    "LocalFile",
    "RemoteFile",
    "parse_remote_listing",
]
