"""Release lifecycle management.

The release manager decides where a run uploads to and finalizes the run:

* ``inplace``: the upload target is ``remoteDir`` itself. An existing
  directory is archived (renamed aside), cleaned, or merged into.
* ``symlink``: every run uploads into a fresh ``releasesRoot/<timestamp>``
  directory. After the transfer, preserved files are carried over from the
  active release, the ``remoteDir`` symlink is atomically repointed with
  ``ln -sfn`` and releases beyond ``keepReleases`` are pruned.

A failure before :meth:`ReleaseManager.switch` leaves the active release
untouched; a partially populated new release stays on disk for inspection.
"""

import logging
import stat as stat_module
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Optional

from .exceptions import DeployError, DeployValidationError
from .profile import DeploymentProfile, Strategy
from .utils import (
    ensure_safe_depth,
    is_release_name,
    join_remote,
    normalize_preserve_files,
    normalize_remote,
    quote_remote,
    release_timestamp,
    remote_basename,
    remote_dirname,
)

if TYPE_CHECKING:
    from .session import RemoteSession

logger = logging.getLogger(__name__)

PRESERVE_TAG = "[preserve]"


@dataclass
class ReleaseTarget:
    """Where the current run uploads to."""

    target_dir: str
    """Remote directory the transfer writes into"""

    release: Optional[str] = None
    """Timestamp name of the new release (symlink strategy only)"""

    releases_root: Optional[str] = None
    archived_to: Optional[str] = None
    """Path the previous remoteDir was renamed to (inplace + archiveExisting)"""


@dataclass
class PreserveOutcome:
    """Per-file result of the preserve step."""

    active_release: str = ""
    copied: list[str] = field(default_factory=list)
    existing: list[str] = field(default_factory=list)
    """Files already present in the new release (left untouched)"""

    missing: list[str] = field(default_factory=list)
    """Files with no source in preserveDir or the active release"""

    failed: list[str] = field(default_factory=list)
    """Files whose copy failed"""


class ReleaseManager:
    """Prepares the upload target and finalizes releases for one profile."""

    def __init__(
        self,
        profile: DeploymentProfile,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize the release manager.

        Args:
            profile: Deployment profile
            clock: Returns the current time (injectable for tests)
        """
        self.profile = profile
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def remote_dir(self) -> str:
        return normalize_remote(str(self.profile.remote_dir))

    @property
    def releases_root(self) -> str:
        """Directory holding the timestamped releases."""
        if self.profile.releases_dir:
            return normalize_remote(self.profile.releases_dir)
        return join_remote(remote_dirname(self.remote_dir), "releases")

    def timestamp(self) -> str:
        return release_timestamp(self._clock())

    def upload_target(self, timestamp: Optional[str] = None) -> str:
        """Return the upload directory without touching the remote host."""
        if self.profile.strategy == Strategy.SYMLINK:
            return join_remote(self.releases_root, timestamp or self.timestamp())
        return self.remote_dir

    # ------------------------------------------------------------------
    # Preparation
    # ------------------------------------------------------------------

    def prepare(self, session: "RemoteSession") -> ReleaseTarget:
        """Prepare the remote upload target for this run.

        Returns:
            ReleaseTarget describing the upload directory
        """
        if self.profile.strategy == Strategy.SYMLINK:
            return self._prepare_release(session)
        return self._prepare_inplace(session)

    def _prepare_release(self, session: "RemoteSession") -> ReleaseTarget:
        name = self.timestamp()
        root = self.releases_root
        target_dir = join_remote(root, name)

        self.ensure_switchable(session)
        if session.exists(target_dir):
            raise DeployValidationError(
                f"Release directory already exists: {target_dir}"
            )

        logger.info("Creating release %s", target_dir)
        session.makedirs(target_dir)
        return ReleaseTarget(target_dir=target_dir, release=name, releases_root=root)

    def _prepare_inplace(self, session: "RemoteSession") -> ReleaseTarget:
        remote_dir = self.remote_dir
        target = ReleaseTarget(target_dir=remote_dir)

        if not session.exists(remote_dir):
            logger.info("Creating remote directory %s", remote_dir)
            session.makedirs(remote_dir)
            return target

        if self.profile.archive_existing:
            ensure_safe_depth(remote_dir, self.profile.min_remote_depth, "archive")
            archive_parent = (
                normalize_remote(self.profile.archive_dir)
                if self.profile.archive_dir
                else remote_dirname(remote_dir)
            )
            if not session.exists(archive_parent):
                session.makedirs(archive_parent)
            archive_path = join_remote(
                archive_parent, f"{remote_basename(remote_dir)}-{self.timestamp()}"
            )
            logger.info("Archiving existing %s to %s", remote_dir, archive_path)
            session.rename(remote_dir, archive_path)
            session.makedirs(remote_dir)
            target.archived_to = archive_path
        elif self.profile.clean_remote:
            ensure_safe_depth(remote_dir, self.profile.min_remote_depth, "clean")
            logger.info("Cleaning remote directory %s", remote_dir)
            session.remove_tree(remote_dir)
            session.makedirs(remote_dir)
        else:
            logger.info("Merging into existing remote directory %s", remote_dir)

        return target

    # ------------------------------------------------------------------
    # Preserve
    # ------------------------------------------------------------------

    def resolve_active_release(self, session: "RemoteSession") -> str:
        """Return the directory ``remoteDir`` currently points at.

        Falls back to ``remoteDir`` itself when it is not a symlink or
        cannot be resolved.
        """
        return session.resolve_link(self.remote_dir) or self.remote_dir

    def build_preserve_script(self, target_dir: str) -> str:
        """Build the POSIX shell script that carries preserved files over.

        Source preference is ``preserveDir`` (if configured), then the active
        release. Existing destinations are never overwritten. Missing sources
        and failed copies are reported, not fatal.

        Raises:
            DeployValidationError: If a preserveFiles entry is unsafe
        """
        files = normalize_preserve_files(self.profile.preserve_files)
        preserve_dir = (
            normalize_remote(self.profile.preserve_dir)
            if self.profile.preserve_dir
            else ""
        )
        file_list = " ".join(quote_remote(f) for f in files)
        tag = PRESERVE_TAG

        return (
            f"remoteDir={quote_remote(self.remote_dir)}; "
            f"targetDir={quote_remote(normalize_remote(target_dir))}; "
            f"preserveDir={quote_remote(preserve_dir)}; "
            'active=$(readlink -f -- "$remoteDir" 2>/dev/null || true); '
            'if [ -z "$active" ]; then active="$remoteDir"; fi; '
            f'echo "{tag} active: $active"; '
            f"for f in {file_list}; do "
            'src=""; dst="$targetDir/$f"; '
            'if [ -n "$preserveDir" ] && [ -e "$preserveDir/$f" ]; then '
            'src="$preserveDir/$f"; '
            'elif [ -e "$active/$f" ]; then src="$active/$f"; fi; '
            f'if [ -z "$src" ]; then echo "{tag} missing: $f"; continue; fi; '
            f'if [ -e "$dst" ]; then echo "{tag} exists: $f"; continue; fi; '
            'if mkdir -p -- "$(dirname -- "$dst")" && cp -a -- "$src" "$dst"; '
            f'then echo "{tag} copied: $f"; '
            f'else echo "{tag} failed: $f"; fi; '
            "done"
        )

    @staticmethod
    def parse_preserve_output(output: str) -> PreserveOutcome:
        outcome = PreserveOutcome()
        buckets = {
            "copied": outcome.copied,
            "exists": outcome.existing,
            "missing": outcome.missing,
            "failed": outcome.failed,
        }
        for line in output.splitlines():
            if not line.startswith(PRESERVE_TAG):
                continue
            status, _, value = line[len(PRESERVE_TAG) :].strip().partition(": ")
            if status == "active":
                outcome.active_release = value
            elif status in buckets:
                buckets[status].append(value)
        return outcome

    def preserve_files(
        self, session: "RemoteSession", target_dir: str
    ) -> PreserveOutcome:
        """Copy preserveFiles from the active release into ``target_dir``.

        Returns:
            PreserveOutcome (empty if no preserveFiles are configured)

        Raises:
            DeployValidationError: If an entry is unsafe (before any command)
            RemoteCommandError: If the preserve script cannot run
        """
        if not normalize_preserve_files(self.profile.preserve_files):
            return PreserveOutcome()

        script = self.build_preserve_script(target_dir)
        logger.info(
            "Preserving %d file(s) from the active release...",
            len(self.profile.preserve_files),
        )
        result = session.run(script)
        outcome = self.parse_preserve_output(result.stdout)

        for name in outcome.copied:
            logger.info("Preserved %s", name)
        for name in outcome.existing:
            logger.info("Preserve skipped, already present in release: %s", name)
        for name in outcome.missing:
            logger.warning("Preserve source missing, skipped: %s", name)
        for name in outcome.failed:
            logger.warning("Failed to preserve %s, continuing without it", name)
        return outcome

    # ------------------------------------------------------------------
    # Finalize
    # ------------------------------------------------------------------

    def ensure_switchable(self, session: "RemoteSession") -> None:
        """Check that ``remoteDir`` can be replaced by a symlink.

        Runs before the release is created, so a refused run uploads nothing.

        Raises:
            DeployValidationError: If ``remoteDir`` is a real directory
        """
        remote_dir = self.remote_dir
        status = session.run(
            f"[ -d {quote_remote(remote_dir)} ] && [ ! -L {quote_remote(remote_dir)} ]",
            check=False,
        )
        if status.ok and not status.skipped:
            raise DeployValidationError(
                f"{remote_dir} is a directory, not a symlink. Move it aside before "
                "switching to the symlink strategy."
            )

    def switch(self, session: "RemoteSession", target_dir: str) -> None:
        """Atomically repoint the ``remoteDir`` symlink at ``target_dir``."""
        remote_dir = self.remote_dir
        logger.info("Linking %s -> %s", remote_dir, target_dir)
        session.run(f"ln -sfn -- {quote_remote(target_dir)} {quote_remote(remote_dir)}")

    def list_releases(self, session: "RemoteSession") -> list[str]:
        """List release names under the releases root, newest first."""
        names = [
            entry.filename
            for entry in session.listdir_attr(self.releases_root)
            if entry.st_mode is not None
            and stat_module.S_ISDIR(entry.st_mode)
            and is_release_name(entry.filename)
        ]
        return sorted(names, reverse=True)

    def prune(
        self, session: "RemoteSession", current: Optional[str] = None
    ) -> list[str]:
        """Remove releases beyond the ``keepReleases`` newest.

        Args:
            session: Connected session
            current: Release created by this run; never removed

        Returns:
            Names of the removed releases

        Raises:
            DeployValidationError: If a release path is too shallow to remove
        """
        releases = self.list_releases(session)
        stale = [
            name
            for name in releases[self.profile.keep_releases :]
            if name != current
        ]
        if not stale:
            return []

        paths = {name: join_remote(self.releases_root, name) for name in stale}
        for path in paths.values():
            ensure_safe_depth(path, self.profile.min_remote_depth, "remove release")

        logger.info("Pruning %d old release(s)...", len(stale))
        removed: list[str] = []
        for name, path in paths.items():
            try:
                session.remove_tree(path)
            except DeployError as e:
                logger.warning("Failed to remove release %s: %s", name, e)
                continue
            logger.debug("Removed release %s", name)
            removed.append(name)
        return removed

    def finalize(self, session: "RemoteSession", target: ReleaseTarget) -> list[str]:
        """Switch the symlink to the new release and prune old ones.

        Does nothing for the inplace strategy.

        Returns:
            Names of pruned releases
        """
        if self.profile.strategy != Strategy.SYMLINK:
            return []
        self.switch(session, target.target_dir)
        return self.prune(session, current=target.release)
