"""Selection of the transfer strategy for a profile."""

from typing import Optional

from ..profile import DeploymentProfile, TransferMode
from ..progress import TransferProgressTracker
from .base import TransferStrategy
from .relay import RelayTransfer
from .sftp import DirectSftpTransfer
from .tar import TarBatchTransfer


def create_transfer_strategy(
    profile: DeploymentProfile,
    progress: Optional[TransferProgressTracker] = None,
) -> TransferStrategy:
    """Create the transfer strategy configured by ``profile.transfer``.

    Args:
        profile: Deployment profile
        progress: Progress tracker shared with the caller

    Returns:
        A ready-to-use TransferStrategy
    """
    if profile.transfer == TransferMode.TAR:
        return TarBatchTransfer(progress=progress)
    if profile.transfer == TransferMode.RELAY:
        return RelayTransfer(progress=progress)
    return DirectSftpTransfer(progress=progress)
