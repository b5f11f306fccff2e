"""Deployment orchestrator.

Sequences one deployment run:

    pre-commands -> prepare target -> diff -> transfer -> preserve
    -> finalize (symlink switch + prune) -> post-commands

The first fatal error aborts the remaining steps.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional

from .exceptions import DeployError
from .profile import DeploymentProfile, Strategy, TransferMode
from .progress import TransferProgressTracker
from .releases import ReleaseManager, ReleaseTarget
from .retry import FailurePolicy, RetryPolicy
from .session import RemoteSession, SessionFactory
from .sync import DiffEngine, DirectoryScanner
from .transfer import TransferStrategy, create_transfer_strategy
from .utils import format_size

logger = logging.getLogger(__name__)


@dataclass
class DeployResult:
    """Outcome of one deployment run."""

    success: bool = False
    strategy: Strategy = Strategy.INPLACE
    transfer: TransferMode = TransferMode.SFTP
    target_dir: Optional[str] = None
    """Remote directory the files were uploaded to"""

    release: Optional[str] = None
    """Timestamp name of the new release (symlink strategy)"""

    uploaded_files: int = 0
    uploaded_bytes: int = 0
    pruned_releases: list[str] = field(default_factory=list)
    archived_to: Optional[str] = None
    error: Optional[DeployError] = None
    """First fatal error (None on success)"""

    duration: float = 0.0
    """Wall-clock duration in seconds"""


@dataclass
class DeployPlan:
    """What a deployment would do, computed without connecting."""

    host: str
    local_dir: Path
    remote_dir: str
    target_dir: str
    strategy: Strategy
    transfer: TransferMode
    local_files: int = 0
    local_bytes: int = 0
    batching: str = ""
    """Batch limit and worker count (archive transfers only)"""

    releases_root: Optional[str] = None
    keep_releases: Optional[int] = None
    pre_commands: list[str] = field(default_factory=list)
    post_commands: list[str] = field(default_factory=list)
    preserve_files: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Return the plan as a flat dictionary for display."""
        data: dict[str, Any] = {
            "host": self.host,
            "local_dir": str(self.local_dir),
            "remote_dir": self.remote_dir,
            "target_dir": self.target_dir,
            "strategy": self.strategy.value,
            "transfer": self.transfer.value,
            "local_files": self.local_files,
            "local_size": format_size(self.local_bytes),
        }
        if self.batching:
            data["batching"] = self.batching
        if self.releases_root:
            data["releases_root"] = self.releases_root
            data["keep_releases"] = self.keep_releases
        if self.preserve_files:
            data["preserve_files"] = ", ".join(self.preserve_files)
        if self.pre_commands:
            data["pre_commands"] = len(self.pre_commands)
        if self.post_commands:
            data["post_commands"] = len(self.post_commands)
        return data


class Deployer:
    """Runs deployments for resolved profiles.

    Examples:
        >>> deployer = Deployer()
        >>> result = deployer.run(profile)
        >>> if not result.success:
        ...     print(result.error)
    """

    def __init__(
        self,
        policy: Optional[FailurePolicy] = None,
        session_factory: Optional[SessionFactory] = None,
        diff_engine: Optional[DiffEngine] = None,
        transfer_factory: Callable[
            [DeploymentProfile, Optional[TransferProgressTracker]], TransferStrategy
        ] = create_transfer_strategy,
        progress: Optional[TransferProgressTracker] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize the deployer.

        Args:
            policy: Failure policy for all remote operations (default: RetryPolicy)
            session_factory: Opens the control session (default: built from
                the profile's connection settings)
            diff_engine: Change detection engine
            transfer_factory: Builds the transfer strategy for a profile
            progress: Progress tracker handed to transfer strategies
            clock: Current-time source for release and archive names
        """
        self.policy = policy or RetryPolicy()
        self.session_factory = session_factory
        self.diff_engine = diff_engine or DiffEngine()
        self.transfer_factory = transfer_factory
        self.progress = progress
        self.clock = clock

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(self, profile: DeploymentProfile) -> DeployResult:
        """Deploy ``profile`` and report the outcome without raising.

        Returns:
            DeployResult; on failure ``success`` is False and ``error`` holds
            the first fatal DeployError
        """
        result = DeployResult(strategy=profile.strategy, transfer=profile.transfer)
        try:
            self._execute(profile, result)
        except DeployError as e:
            logger.error("Deployment failed: %s", e)
            result.success = False
            result.error = e
        return result

    def deploy(self, profile: DeploymentProfile) -> DeployResult:
        """Deploy ``profile``.

        Raises:
            DeployError: On the first fatal failure
        """
        result = DeployResult(strategy=profile.strategy, transfer=profile.transfer)
        self._execute(profile, result)
        return result

    def plan(self, profile: DeploymentProfile) -> DeployPlan:
        """Describe what :meth:`run` would do, without connecting.

        Raises:
            DeployConfigError: If the profile is invalid
            DeployValidationError: If a preserveFiles entry is unsafe
        """
        profile.validate()
        local_dir = profile.validate_local_dir()
        releases = ReleaseManager(profile, clock=self.clock)
        local_files = DirectoryScanner().scan_local(local_dir)

        plan = DeployPlan(
            host=profile.connection.label,
            local_dir=local_dir,
            remote_dir=releases.remote_dir,
            target_dir=releases.upload_target(),
            strategy=profile.strategy,
            transfer=profile.transfer,
            local_files=len(local_files),
            local_bytes=sum(f.size for f in local_files),
            pre_commands=list(profile.pre_commands),
            post_commands=list(profile.post_commands),
            preserve_files=list(profile.preserve_files),
        )
        if profile.transfer == TransferMode.TAR:
            limit = (
                format_size(profile.batch_size_bytes)
                if profile.batch_size_bytes > 0
                else "single archive"
            )
            plan.batching = f"{limit}, {profile.concurrency} worker(s)"
        elif profile.transfer == TransferMode.RELAY:
            plan.batching = f"single archive via {profile.relay_host}"
        if profile.strategy == Strategy.SYMLINK:
            plan.releases_root = releases.releases_root
            plan.keep_releases = profile.keep_releases
        return plan

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _open_session(self, profile: DeploymentProfile) -> RemoteSession:
        factory = self.session_factory or SessionFactory(
            profile.connection, policy=self.policy
        )
        return factory.open()

    def _execute(self, profile: DeploymentProfile, result: DeployResult) -> None:
        started = time.monotonic()
        try:
            # Configuration errors surface before any network activity
            profile.validate()
            local_dir = profile.validate_local_dir()

            with self._open_session(profile) as session:
                self._run_commands(session, profile.pre_commands, "pre")

                releases = ReleaseManager(profile, clock=self.clock)
                target = releases.prepare(session)
                result.target_dir = target.target_dir
                result.release = target.release
                result.archived_to = target.archived_to

                self._transfer(profile, local_dir, target, session, result)

                if profile.strategy == Strategy.SYMLINK:
                    releases.preserve_files(session, target.target_dir)
                result.pruned_releases = releases.finalize(session, target)

                self._run_commands(session, profile.post_commands, "post")

            result.success = True
            logger.info("Deployment to %s finished.", result.target_dir)
        finally:
            result.duration = time.monotonic() - started

    def _transfer(
        self,
        profile: DeploymentProfile,
        local_dir: Path,
        target: ReleaseTarget,
        session: RemoteSession,
        result: DeployResult,
    ) -> None:
        change_set = self.diff_engine.compute_change_set(
            local_dir, target.target_dir, session
        )
        if not change_set:
            logger.info("No changes detected.")
            return

        strategy = self.transfer_factory(profile, self.progress)
        logger.info(
            "Transferring %d file(s) (%s) via %s",
            len(change_set),
            format_size(change_set.total_size),
            strategy.name,
        )
        stats = strategy.upload(
            change_set, local_dir, target.target_dir, session, profile
        )
        result.uploaded_files = stats.files
        result.uploaded_bytes = stats.bytes

    @staticmethod
    def _run_commands(
        session: RemoteSession, commands: tuple[str, ...], stage: str
    ) -> None:
        if not commands:
            return
        logger.info("Executing %s-commands...", stage)
        for command in commands:
            result = session.run(command)
            if result.stdout.strip():
                logger.info("%s", result.stdout.rstrip())
