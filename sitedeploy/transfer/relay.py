"""Transfer routed through a relay (jump) host.

Used when the control machine cannot push bulk data to the target directly.
One archive of the whole change set is uploaded to the relay, which copies it
to the target with ``scp`` and extracts it there over ``ssh``.
"""

import logging
import shlex
import uuid
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from ..exceptions import DeployConfigError, DeployError
from ..progress import TransferProgressTracker
from ..session import SessionFactory
from ..sync.comparator import ChangeSet
from ..utils import format_size, join_remote, quote_remote
from .archive import build_archive, extract_command
from .base import TransferStats, TransferStrategy

if TYPE_CHECKING:
    from ..profile import DeploymentProfile
    from ..session import RemoteSession

logger = logging.getLogger(__name__)

RELAY_TMP_DIR = "/tmp"
TARGET_TMP_DIR = "/tmp"

# Non-interactive ssh/scp options used on the relay
SSH_OPTIONS = "-o StrictHostKeyChecking=no -o BatchMode=yes"


class RelayTransfer(TransferStrategy):
    """Uploads one archive to a relay host and forwards it to the target."""

    name = "relay"

    def __init__(
        self,
        relay_session_factory: Optional[SessionFactory] = None,
        progress: Optional[TransferProgressTracker] = None,
    ):
        """Initialize relay transfer.

        Args:
            relay_session_factory: Opens the session to the relay host
                (defaults to one built from the profile's relay settings)
            progress: Progress tracker
        """
        super().__init__(progress)
        self.relay_session_factory = relay_session_factory

    @staticmethod
    def needs_key_upload(profile: "DeploymentProfile") -> bool:
        """Whether the target's private key must be copied to the relay.

        Whenever the target authenticates with a key. Logging in to the relay
        with that same key does not make it available on the relay.
        """
        return bool(profile.key_path)

    @staticmethod
    def _destination(profile: "DeploymentProfile") -> str:
        if profile.username:
            return f"{profile.username}@{profile.host}"
        return str(profile.host)

    def build_commands(
        self,
        profile: "DeploymentProfile",
        target_dir: str,
        relay_archive: str,
        target_archive: str,
        relay_key: Optional[str],
    ) -> tuple[str, str]:
        """Build the scp and ssh commands executed on the relay.

        Returns:
            Tuple of (scp command, ssh extract command)
        """
        identity = f"-i {quote_remote(relay_key)} " if relay_key else ""
        destination = self._destination(profile)

        scp_cmd = (
            f"scp {SSH_OPTIONS} -P {profile.port} {identity}"
            f"{quote_remote(relay_archive)} {destination}:{target_archive}"
        )

        remote_script = (
            f"mkdir -p -- {quote_remote(target_dir)} && "
            + extract_command(target_archive, target_dir)
        )
        ssh_cmd = (
            f"ssh {SSH_OPTIONS} -p {profile.port} {identity}"
            f"{destination} {shlex.quote(remote_script)}"
        )
        return scp_cmd, ssh_cmd

    def upload(
        self,
        change_set: ChangeSet,
        local_dir: Path,
        target_dir: str,
        session: "RemoteSession",
        profile: "DeploymentProfile",
    ) -> TransferStats:
        if not profile.relay_host:
            raise DeployConfigError("relayHost is required for 'relay' transfer mode")
        if not change_set:
            return TransferStats()

        factory = self.relay_session_factory or SessionFactory(
            profile.relay_connection, policy=session.policy
        )
        logger.info("Preparing relay transfer via %s...", profile.relay_host)

        self.progress.start(len(change_set), change_set.total_size, batches=1)
        label = f"Relay {profile.relay_host}"
        self.progress.batch_started(label)
        self.progress.batch_stage(label, f"compressing {len(change_set)} file(s)")
        archive = build_archive(change_set.files, local_dir, prefix="deploy-relay-")

        token = uuid.uuid4().hex
        relay_archive = join_remote(RELAY_TMP_DIR, f"deploy-{token}.tar.gz")
        target_archive = join_remote(TARGET_TMP_DIR, f"deploy-{token}.tar.gz")
        relay_key = (
            join_remote(RELAY_TMP_DIR, f"deploy-key-{token}.pem")
            if self.needs_key_upload(profile)
            else None
        )

        relay: Optional["RemoteSession"] = None
        try:
            relay = factory.open()

            self.progress.batch_stage(
                label, f"uploading {format_size(archive.stat().st_size)} to relay"
            )
            relay.put(
                archive,
                relay_archive,
                callback=lambda sent, size: self.progress.bytes_sent(label, sent, size),
            )

            if relay_key is not None:
                logger.info("Uploading ephemeral key to relay...")
                relay.put(Path(str(profile.key_path)).expanduser(), relay_key)
                relay.chmod(relay_key, 0o600)

            scp_cmd, ssh_cmd = self.build_commands(
                profile, target_dir, relay_archive, target_archive, relay_key
            )

            self.progress.batch_stage(label, "relaying bundle to target")
            relay.run(scp_cmd)

            self.progress.batch_stage(label, "extracting on target")
            relay.run(ssh_cmd)
        finally:
            if relay is not None:
                self._cleanup_relay(relay, relay_archive, relay_key)
                relay.close()
            archive.unlink(missing_ok=True)

        self.progress.batch_finished(label, len(change_set), change_set.total_size)
        self.progress.finish()
        logger.info("Relay deployment complete.")
        return TransferStats(
            files=len(change_set), bytes=change_set.total_size, batches=1
        )

    @staticmethod
    def _cleanup_relay(
        relay: "RemoteSession", relay_archive: str, relay_key: Optional[str]
    ) -> None:
        """Remove the archive and ephemeral key from the relay (best effort)."""
        paths = [relay_archive] + ([relay_key] if relay_key else [])
        command = "rm -f -- " + " ".join(quote_remote(p) for p in paths)
        try:
            relay.run(command, check=False)
        except DeployError as e:
            logger.warning("Failed to clean up relay temporary files: %s", e)
