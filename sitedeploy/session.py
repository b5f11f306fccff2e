"""Managed SSH + SFTP sessions with automatic reconnection.

A :class:`RemoteSession` owns one SSH command channel and one SFTP channel to a
single host. Each remote call is routed through the session's
:class:`~sitedeploy.retry.FailurePolicy`; when the policy decides to retry a
transient fault the current :class:`SSHConnection` is discarded and a fresh one
is opened. Callers only ever hold the session handle, never the connection.

Sessions are not thread-safe. Concurrent workers must each open their own
session through a :class:`SessionFactory`.
"""

import logging
import stat as stat_module
from dataclasses import dataclass
from enum import Enum
from os import PathLike
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar, Union

import paramiko

from .exceptions import (
    DeployAuthenticationError,
    DeployConnectionError,
    DeployError,
    DeployTransferError,
    RemoteCommandError,
)
from .profile import ConnectionSettings
from .retry import FailurePolicy, RetryPolicy
from .utils import KEEPALIVE_INTERVAL, READY_TIMEOUT, quote_remote

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SessionState(str, Enum):
    """Lifecycle states of a remote session."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    READY = "ready"
    FAILED = "failed"


@dataclass
class CommandResult:
    """Outcome of one remote shell command."""

    command: str
    stdout: str = ""
    stderr: str = ""
    exit_status: int = 0
    skipped: bool = False
    """True when the failure policy chose to skip the command"""

    @property
    def ok(self) -> bool:
        """Whether the command exited with status 0."""
        return self.exit_status == 0


class SSHConnection:
    """A single connected paramiko SSH client and its SFTP channel.

    Connections are never repaired in place; a broken connection is closed
    and replaced by a new instance.
    """

    def __init__(
        self,
        settings: ConnectionSettings,
        client_factory: Callable[[], paramiko.SSHClient] = paramiko.SSHClient,
    ):
        self.settings = settings
        self._client_factory = client_factory
        self._client: Optional[paramiko.SSHClient] = None
        self._sftp: Optional[paramiko.SFTPClient] = None

    def open(self) -> None:
        """Connect, enable keep-alive and open the SFTP channel."""
        client = self._client_factory()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        connect_kwargs: dict[str, Any] = {
            "hostname": self.settings.host,
            "port": self.settings.port,
            "username": self.settings.username,
            "timeout": READY_TIMEOUT,
            "banner_timeout": READY_TIMEOUT,
            "auth_timeout": READY_TIMEOUT,
        }
        if self.settings.key_path:
            key_file = Path(self.settings.key_path).expanduser()
            connect_kwargs["key_filename"] = str(key_file)
            if self.settings.passphrase:
                connect_kwargs["passphrase"] = self.settings.passphrase
        if self.settings.password:
            connect_kwargs["password"] = self.settings.password

        self._client = client
        client.connect(**connect_kwargs)

        transport = client.get_transport()
        if transport is not None:
            transport.set_keepalive(KEEPALIVE_INTERVAL)

        self._sftp = client.open_sftp()

    @property
    def is_active(self) -> bool:
        """Whether the underlying transport is still up."""
        if self._client is None:
            return False
        transport = self._client.get_transport()
        return transport is not None and transport.is_active()

    @property
    def sftp(self) -> paramiko.SFTPClient:
        if self._sftp is None:
            raise DeployConnectionError("Not connected: SFTP channel is not open")
        return self._sftp

    def exec(self, command: str, timeout: Optional[float] = None) -> CommandResult:
        """Run a command and wait for its exit status."""
        if self._client is None:
            raise DeployConnectionError("Not connected: SSH client is not open")

        _stdin, stdout, stderr = self._client.exec_command(command, timeout=timeout)
        out = stdout.read().decode("utf-8", errors="replace")
        err = stderr.read().decode("utf-8", errors="replace")
        exit_status = stdout.channel.recv_exit_status()
        return CommandResult(
            command=command, stdout=out, stderr=err, exit_status=exit_status
        )

    def close(self) -> None:
        """Close the SFTP channel and the SSH client."""
        if self._sftp is not None:
            self._sftp.close()
            self._sftp = None
        if self._client is not None:
            self._client.close()
            self._client = None


class RemoteSession:
    """Auto-reconnecting SSH command + SFTP session to one host.

    Examples:
        >>> with SessionFactory(settings).open() as session:
        ...     session.run("mkdir -p /srv/site")
        ...     session.put(Path("index.html"), "/srv/site/index.html")
    """

    def __init__(
        self,
        settings: ConnectionSettings,
        policy: Optional[FailurePolicy] = None,
        connection_factory: Callable[[ConnectionSettings], SSHConnection] = (
            SSHConnection
        ),
    ):
        """Initialize a (not yet connected) remote session.

        Args:
            settings: Host address and credentials
            policy: Failure policy for every remote call (default: RetryPolicy)
            connection_factory: Builds a fresh SSHConnection
        """
        self.settings = settings
        self.policy = policy or RetryPolicy()
        self._connection_factory = connection_factory
        self._connection: Optional[SSHConnection] = None
        self._state = SessionState.DISCONNECTED
        self.reconnects = 0

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def label(self) -> str:
        return self.settings.label

    def __enter__(self) -> "RemoteSession":
        if self._state != SessionState.READY:
            self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def connect(self) -> None:
        """Open the connection, retrying transient failures.

        Raises:
            DeployAuthenticationError: If the credentials are rejected
            DeployConnectionError: If the host stays unreachable
        """
        logger.info("Connecting to %s...", self.label)
        try:
            self.policy.run(self._open_connection, name=f"SSH connect {self.label}")
        except Exception as e:
            raise self._translate(e, DeployConnectionError, "connect") from e
        if self._state != SessionState.READY:
            raise DeployConnectionError(f"Connection to {self.label} was skipped")

    def _open_connection(self) -> None:
        self._state = SessionState.CONNECTING
        connection = self._connection_factory(self.settings)
        try:
            connection.open()
        except Exception:
            self._state = SessionState.FAILED
            self._discard(connection)
            raise
        self._connection = connection
        self._state = SessionState.READY
        logger.debug("Connected to %s", self.label)

    def reconnect(self) -> None:
        """Discard the current connection and open a fresh one."""
        logger.warning("Connection to %s lost. Reconnecting...", self.label)
        if self._connection is not None:
            self._discard(self._connection)
            self._connection = None
        self._state = SessionState.DISCONNECTED
        self.reconnects += 1
        self._open_connection()

    def close(self) -> None:
        """Close the session. Safe to call more than once."""
        if self._connection is not None:
            self._discard(self._connection)
            self._connection = None
        self._state = SessionState.DISCONNECTED

    @staticmethod
    def _discard(connection: SSHConnection) -> None:
        try:
            connection.close()
        except (OSError, EOFError, paramiko.SSHException) as e:
            # Closing an already broken transport is expected to fail
            logger.debug("Ignoring error while closing connection: %s", e)

    def _require_connection(self) -> SSHConnection:
        if self._state != SessionState.READY or self._connection is None:
            raise DeployConnectionError(
                f"Session to {self.label} is not open (state: {self._state.value})"
            )
        return self._connection

    # ------------------------------------------------------------------
    # Error translation
    # ------------------------------------------------------------------

    def _translate(
        self, error: Exception, default_cls: type, action: str
    ) -> DeployError:
        if isinstance(error, DeployError):
            return error
        if isinstance(error, paramiko.AuthenticationException):
            return DeployAuthenticationError(
                f"Authentication to {self.label} was rejected: {error}"
            )
        if isinstance(error, (paramiko.SSHException, EOFError)):
            return DeployConnectionError(f"SSH error during {action}: {error}")
        return default_cls(f"{action} failed on {self.label}: {error}")

    def _call(
        self,
        name: str,
        func: Callable[[SSHConnection], T],
        error_cls: type = DeployTransferError,
    ) -> Optional[T]:
        try:
            return self.policy.run(
                lambda: func(self._require_connection()),
                name=name,
                reconnect=self.reconnect,
            )
        except Exception as e:
            raise self._translate(e, error_cls, name) from e

    # ------------------------------------------------------------------
    # Remote commands
    # ------------------------------------------------------------------

    def run(
        self, command: str, check: bool = True, timeout: Optional[float] = None
    ) -> CommandResult:
        """Run a shell command on the remote host.

        Args:
            command: POSIX shell command line
            check: Raise RemoteCommandError on non-zero exit status
            timeout: Channel timeout in seconds

        Returns:
            CommandResult (``skipped=True`` if the failure policy skipped it)
        """
        logger.debug("[%s] $ %s", self.settings.host, command)

        def execute(connection: SSHConnection) -> CommandResult:
            result = connection.exec(command, timeout=timeout)
            if check and not result.ok:
                raise RemoteCommandError(
                    command, result.exit_status, result.stdout, result.stderr
                )
            return result

        result = self._call("SSH command", execute, DeployConnectionError)
        if result is None:
            return CommandResult(command=command, skipped=True)
        return result

    def makedirs(self, path: str) -> CommandResult:
        """Create a remote directory and its parents (``mkdir -p``)."""
        return self.run(f"mkdir -p -- {quote_remote(path)}")

    def remove_tree(self, path: str) -> CommandResult:
        """Recursively remove a remote path (``rm -rf``)."""
        return self.run(f"rm -rf -- {quote_remote(path)}")

    def resolve_link(self, path: str) -> Optional[str]:
        """Resolve ``path`` with ``readlink -f``.

        Returns:
            The canonical path, or None if it cannot be resolved
        """
        result = self.run(
            f"readlink -f -- {quote_remote(path)} 2>/dev/null || true", check=False
        )
        resolved = result.stdout.strip()
        return resolved or None

    # ------------------------------------------------------------------
    # SFTP operations
    # ------------------------------------------------------------------

    def put(
        self,
        local_path: Union[str, PathLike],
        remote_path: str,
        callback: Optional[Callable[[int, int], None]] = None,
    ) -> None:
        """Upload a local file to ``remote_path``."""
        logger.debug("put %s -> %s", local_path, remote_path)
        self._call(
            "SFTP put",
            lambda conn: conn.sftp.put(str(local_path), remote_path, callback=callback),
        )

    def mkdir(self, path: str) -> None:
        """Create a single remote directory over SFTP."""
        self._call("SFTP mkdir", lambda conn: conn.sftp.mkdir(path))

    def rmdir(self, path: str) -> None:
        """Remove an empty remote directory over SFTP."""
        self._call("SFTP rmdir", lambda conn: conn.sftp.rmdir(path))

    def rename(self, source: str, destination: str) -> None:
        """Rename a remote path over SFTP."""
        logger.debug("rename %s -> %s", source, destination)
        self._call("SFTP rename", lambda conn: conn.sftp.rename(source, destination))

    def chmod(self, path: str, mode: int) -> None:
        """Change permissions of a remote path."""
        self._call("SFTP chmod", lambda conn: conn.sftp.chmod(path, mode))

    def listdir_attr(self, path: str) -> list[paramiko.SFTPAttributes]:
        """List a remote directory with attributes."""
        result = self._call("SFTP list", lambda conn: conn.sftp.listdir_attr(path))
        return result or []

    def exists(self, path: str) -> bool:
        """Check whether a remote path exists (following symlinks)."""

        def check(connection: SSHConnection) -> bool:
            try:
                connection.sftp.stat(path)
            except FileNotFoundError:
                return False
            return True

        return bool(self._call("SFTP stat", check))

    def is_dir(self, path: str) -> bool:
        """Check whether a remote path is a directory (following symlinks)."""

        def check(connection: SSHConnection) -> bool:
            try:
                attrs = connection.sftp.stat(path)
            except FileNotFoundError:
                return False
            return attrs.st_mode is not None and stat_module.S_ISDIR(attrs.st_mode)

        return bool(self._call("SFTP stat", check))


class SessionFactory:
    """Opens independent sessions to one host.

    Used wherever each worker needs its own session.
    """

    def __init__(
        self,
        settings: ConnectionSettings,
        policy: Optional[FailurePolicy] = None,
        connection_factory: Callable[[ConnectionSettings], SSHConnection] = (
            SSHConnection
        ),
    ):
        self.settings = settings
        self.policy = policy or RetryPolicy()
        self._connection_factory = connection_factory

    def create(self) -> RemoteSession:
        """Create a new, not yet connected, session."""
        return RemoteSession(
            self.settings,
            policy=self.policy,
            connection_factory=self._connection_factory,
        )

    def open(self) -> RemoteSession:
        """Create and connect a new session."""
        session = self.create()
        session.connect()
        return session
