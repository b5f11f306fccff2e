"""Transfer strategy interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from ..progress import TransferProgressTracker
from ..sync.comparator import ChangeSet

if TYPE_CHECKING:
    from ..profile import DeploymentProfile
    from ..session import RemoteSession


@dataclass
class TransferStats:
    """What a transfer strategy moved."""

    files: int = 0
    bytes: int = 0
    batches: int = 0


class TransferStrategy(ABC):
    """Moves a change set from the local tree into a remote directory.

    Implementations must not assume exclusive access to ``target_dir``
    beyond what the release manager prepared.
    """

    name: str = ""

    def __init__(self, progress: Optional[TransferProgressTracker] = None):
        self.progress = progress or TransferProgressTracker()

    @abstractmethod
    def upload(
        self,
        change_set: ChangeSet,
        local_dir: Path,
        target_dir: str,
        session: "RemoteSession",
        profile: "DeploymentProfile",
    ) -> TransferStats:
        """Transfer every file of ``change_set`` below ``target_dir``.

        Args:
            change_set: Files to transfer
            local_dir: Local root the relative paths refer to
            target_dir: Remote directory to upload into
            session: Connected session to the target host
            profile: Deployment profile

        Returns:
            TransferStats for the run

        Raises:
            DeployError: On any fatal failure
        """
        ...
