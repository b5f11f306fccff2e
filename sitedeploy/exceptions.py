"""Exceptions raised by the deployment engine."""

from typing import Optional


class DeployError(Exception):
    """Base exception for all deployment errors."""

    pass


class DeployConfigError(DeployError):
    """Raised when the deployment profile is missing fields or is invalid.

    Always raised before any network activity and never retried.
    """

    pass


class DeployConnectionError(DeployError):
    """Raised when the SSH/SFTP connection cannot be established or is lost."""

    pass


class DeployAuthenticationError(DeployConnectionError):
    """Raised when the remote host rejects the supplied credentials."""

    pass


class RemoteCommandError(DeployError):
    """Raised when a remote shell command exits with a non-zero status."""

    def __init__(
        self,
        command: str,
        exit_status: int,
        stdout: str = "",
        stderr: str = "",
        message: Optional[str] = None,
    ):
        self.command = command
        self.exit_status = exit_status
        self.stdout = stdout
        self.stderr = stderr
        if message is None:
            message = f"Remote command exited with status {exit_status}: {command}"
            if stderr.strip():
                message += f"\n{stderr.strip()}"
        super().__init__(message)


class DeployTransferError(DeployError):
    """Raised when an SFTP put/mkdir/rename/list operation fails."""

    pass


class DeployValidationError(DeployError):
    """Raised when a path value is unsafe to interpolate into a remote command."""

    pass
