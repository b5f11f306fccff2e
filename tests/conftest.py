"""Shared fixtures for sitedeploy tests.

``LocalShellSession`` stands in for a RemoteSession by running every remote
command through the local ``/bin/sh`` and every SFTP call against the local
filesystem, so shell scripts built by the engine are executed for real.
"""

import os
import shutil
import subprocess
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional

import paramiko
import pytest

from sitedeploy.exceptions import RemoteCommandError
from sitedeploy.profile import DeploymentProfile
from sitedeploy.retry import RetryPolicy
from sitedeploy.session import CommandResult


class LocalShellSession:
    """RemoteSession look-alike backed by the local machine."""

    def __init__(self, policy=None):
        self.policy = policy or RetryPolicy(sleep=lambda _: None)
        self.commands: list[str] = []
        self.puts: list[tuple[Path, str]] = []
        self.chmods: list[tuple[str, int]] = []
        self.closed = False
        self.fail_on: Optional[Callable[[str], bool]] = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self) -> None:
        self.closed = True

    def run(self, command, check=True, timeout=None) -> CommandResult:
        self.commands.append(command)
        if self.fail_on is not None and self.fail_on(command):
            raise RemoteCommandError(command, 1, stderr="injected failure")
        completed = subprocess.run(
            ["/bin/sh", "-c", command], capture_output=True, text=True
        )
        result = CommandResult(
            command=command,
            stdout=completed.stdout,
            stderr=completed.stderr,
            exit_status=completed.returncode,
        )
        if check and not result.ok:
            raise RemoteCommandError(
                command, result.exit_status, result.stdout, result.stderr
            )
        return result

    def makedirs(self, path: str) -> CommandResult:
        return self.run(f'mkdir -p -- "{path}"')

    def remove_tree(self, path: str) -> CommandResult:
        return self.run(f'rm -rf -- "{path}"')

    def resolve_link(self, path: str) -> Optional[str]:
        resolved = self.run(
            f'readlink -f -- "{path}" 2>/dev/null || true', check=False
        ).stdout.strip()
        return resolved or None

    def put(self, local_path, remote_path, callback=None) -> None:
        self.puts.append((Path(local_path), remote_path))
        shutil.copyfile(local_path, remote_path)
        if callback is not None:
            size = os.path.getsize(remote_path)
            callback(size, size)

    def rename(self, source: str, destination: str) -> None:
        os.rename(source, destination)

    def chmod(self, path: str, mode: int) -> None:
        self.chmods.append((path, mode))
        os.chmod(path, mode)

    def exists(self, path: str) -> bool:
        return os.path.exists(path)

    def is_dir(self, path: str) -> bool:
        return os.path.isdir(path)

    def listdir_attr(self, path: str) -> list[paramiko.SFTPAttributes]:
        return [
            paramiko.SFTPAttributes.from_stat(os.stat(entry.path), entry.name)
            for entry in os.scandir(path)
        ]


class SteppingClock:
    """Clock returning a time one second later on every call."""

    def __init__(self, start: Optional[datetime] = None):
        self.current = start or datetime(2024, 1, 4, 0, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        now = self.current
        self.current += timedelta(seconds=1)
        return now


def write_tree(root: Path, files: dict[str, int]) -> Path:
    """Create files of the given sizes below ``root``."""
    root = Path(root)
    for relative_path, size in files.items():
        path = root / relative_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"x" * size)
    return root


@pytest.fixture
def shell_session():
    """Provide a LocalShellSession."""
    return LocalShellSession()


@pytest.fixture
def local_dir(tmp_path):
    """Provide a small local site tree."""
    return write_tree(
        tmp_path / "site",
        {"index.html": 10, "css/app.css": 20, "js/app.js": 5},
    )


@pytest.fixture
def remote_root(tmp_path):
    """Provide the directory acting as the remote filesystem."""
    root = tmp_path / "srv" / "www"
    root.mkdir(parents=True)
    return root


@pytest.fixture
def make_profile(local_dir, remote_root):
    """Build DeploymentProfiles pointing at the local fixtures."""

    def factory(**overrides) -> DeploymentProfile:
        values = {
            "host": "example.com",
            "username": "deploy",
            "key_path": "~/.ssh/id_ed25519",
            "local_dir": local_dir,
            "remote_dir": str(remote_root / "site"),
        }
        values.update(overrides)
        return DeploymentProfile(**values)

    return factory


@pytest.fixture
def make_tree():
    """Provide the write_tree helper."""
    return write_tree
