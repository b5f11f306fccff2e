"""Transfer strategies moving a change set to the remote host."""

from .base import TransferStats, TransferStrategy
from .batching import Batch, create_batches
from .factory import create_transfer_strategy
from .relay import RelayTransfer
from .sftp import DirectSftpTransfer
from .tar import TarBatchTransfer

__all__ = [
    "Batch",
    "DirectSftpTransfer",
    "RelayTransfer",
    "TarBatchTransfer",
    "TransferStats",
    "TransferStrategy",
    "create_batches",
    "create_transfer_strategy",
]
