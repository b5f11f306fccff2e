"""sitedeploy - Deploy a local directory tree to a remote host over SSH/SFTP."""

from .deployer import Deployer, DeployPlan, DeployResult
from .exceptions import (
    DeployAuthenticationError,
    DeployConfigError,
    DeployConnectionError,
    DeployError,
    DeployTransferError,
    DeployValidationError,
    RemoteCommandError,
)
from .profile import DeploymentProfile, Strategy, TransferMode
from .retry import FailurePolicy, InteractiveFailurePolicy, RetryPolicy

__version__ = "0.1.0"

__all__ = [
    "Deployer",
    "DeployPlan",
    "DeployResult",
    "DeploymentProfile",
    "Strategy",
    "TransferMode",
    "FailurePolicy",
    "RetryPolicy",
    "InteractiveFailurePolicy",
    "DeployError",
    "DeployAuthenticationError",
    "DeployConfigError",
    "DeployConnectionError",
    "DeployTransferError",
    "DeployValidationError",
    "RemoteCommandError",
]
