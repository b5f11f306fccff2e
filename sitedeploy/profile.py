"""Deployment profile: the fully-resolved input of one deployment run."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from .exceptions import DeployConfigError
from .utils import normalize_preserve_files


class Strategy(str, Enum):
    """Release strategies."""

    INPLACE = "inplace"
    """Upload straight into remoteDir"""

    SYMLINK = "symlink"
    """Upload into a fresh timestamped release and repoint the remoteDir symlink"""

    @classmethod
    def from_value(cls, value: "str | Strategy") -> "Strategy":
        """Parse a strategy name.

        Raises:
            DeployConfigError: If the value is not a known strategy
        """
        try:
            return cls(str(getattr(value, "value", value)).lower())
        except ValueError:
            valid = ", ".join(s.value for s in cls)
            raise DeployConfigError(
                f"Invalid strategy '{value}'. Expected one of: {valid}"
            ) from None


class TransferMode(str, Enum):
    """Wire strategies used to move the change set."""

    SFTP = "sftp"
    """One SFTP put per file"""

    TAR = "tar"
    """Batched gzip tar archives, pushed and extracted remotely"""

    RELAY = "relay"
    """Single archive routed through a relay (jump) host"""

    @classmethod
    def from_value(cls, value: "str | TransferMode") -> "TransferMode":
        """Parse a transfer mode name.

        Raises:
            DeployConfigError: If the value is not a known transfer mode
        """
        try:
            return cls(str(getattr(value, "value", value)).lower())
        except ValueError:
            valid = ", ".join(t.value for t in cls)
            raise DeployConfigError(
                f"Invalid transfer mode '{value}'. Expected one of: {valid}"
            ) from None


@dataclass(frozen=True)
class ConnectionSettings:
    """Credentials and address of one SSH host."""

    host: str
    port: int = 22
    username: Optional[str] = None
    key_path: Optional[str] = None
    password: Optional[str] = None
    passphrase: Optional[str] = None

    @property
    def label(self) -> str:
        """Human-readable ``user@host:port`` string."""
        user = f"{self.username}@" if self.username else ""
        return f"{user}{self.host}:{self.port}"


@dataclass(frozen=True)
class DeploymentProfile:
    """Immutable description of a deployment.

    Produced by the configuration layer and owned by the Deployer for the
    duration of one run.
    """

    host: Optional[str] = None
    """Target host"""

    remote_dir: Optional[str] = None
    """Public remote directory (a symlink under the symlink strategy)"""

    local_dir: Optional[Path] = None
    """Local directory tree to deploy"""

    port: int = 22
    username: Optional[str] = None
    key_path: Optional[str] = None
    password: Optional[str] = None
    passphrase: Optional[str] = None

    strategy: Strategy = Strategy.INPLACE
    transfer: TransferMode = TransferMode.SFTP

    batch_size_bytes: int = 0
    """Tar batch size limit; 0 packs everything into one archive"""

    concurrency: int = 1
    """Number of parallel tar workers"""

    releases_dir: Optional[str] = None
    """Releases root; defaults to ``<parent of remote_dir>/releases``"""

    keep_releases: int = 5
    preserve_files: tuple[str, ...] = field(default_factory=tuple)
    preserve_dir: Optional[str] = None

    archive_existing: bool = False
    archive_dir: Optional[str] = None
    clean_remote: bool = False

    pre_commands: tuple[str, ...] = field(default_factory=tuple)
    post_commands: tuple[str, ...] = field(default_factory=tuple)

    min_remote_depth: int = 2
    """Minimum path depth for destructive remote operations"""

    relay_host: Optional[str] = None
    relay_port: int = 22
    relay_username: Optional[str] = None
    relay_key_path: Optional[str] = None

    def __post_init__(self) -> None:
        # Coerce loosely-typed values handed over by the configuration layer
        object.__setattr__(self, "strategy", Strategy.from_value(self.strategy))
        object.__setattr__(self, "transfer", TransferMode.from_value(self.transfer))
        if self.local_dir is not None and not isinstance(self.local_dir, Path):
            object.__setattr__(self, "local_dir", Path(self.local_dir))
        for name in ("preserve_files", "pre_commands", "post_commands"):
            object.__setattr__(self, name, tuple(getattr(self, name) or ()))

    @property
    def connection(self) -> ConnectionSettings:
        """Connection settings for the target host."""
        return ConnectionSettings(
            host=self.host or "",
            port=self.port,
            username=self.username,
            key_path=self.key_path,
            password=self.password,
            passphrase=self.passphrase,
        )

    @property
    def relay_connection(self) -> ConnectionSettings:
        """Connection settings for the relay host.

        Username and key fall back to the target's when not set explicitly.
        """
        return ConnectionSettings(
            host=self.relay_host or "",
            port=self.relay_port,
            username=self.relay_username or self.username,
            key_path=self.relay_key_path or self.key_path,
            password=self.password,
            passphrase=self.passphrase,
        )

    def validate(self) -> None:
        """Check required fields and value ranges.

        Raises:
            DeployConfigError: If a required field is missing or out of range
            DeployValidationError: If a preserveFiles entry is unsafe
        """
        missing = [
            name
            for name, value in (
                ("host", self.host),
                ("remoteDir", self.remote_dir),
                ("localDir", self.local_dir),
            )
            if not value
        ]
        if missing:
            raise DeployConfigError(
                f"Missing required profile field(s): {', '.join(missing)}"
            )
        if not self.key_path and not self.password:
            raise DeployConfigError(
                "Either a private key (privateKeyPath) or a password is required"
            )
        if self.concurrency < 1:
            raise DeployConfigError(
                f"concurrency must be at least 1, got {self.concurrency}"
            )
        if self.keep_releases < 1:
            raise DeployConfigError(
                f"keepReleases must be at least 1, got {self.keep_releases}"
            )
        if self.batch_size_bytes < 0:
            raise DeployConfigError(
                "batchSizeMB must not be negative, "
                f"got {self.batch_size_bytes / (1024 * 1024):g}"
            )
        if self.port <= 0 or self.relay_port <= 0:
            raise DeployConfigError("SSH ports must be positive integers")
        if self.transfer == TransferMode.RELAY and not self.relay_host:
            raise DeployConfigError("relayHost is required for 'relay' transfer mode")

        normalize_preserve_files(self.preserve_files)

    def validate_local_dir(self) -> Path:
        """Ensure the local directory exists and is a directory.

        Returns:
            Resolved local directory

        Raises:
            DeployConfigError: If the local directory is missing
        """
        local_dir = Path(self.local_dir or "").expanduser()
        if not local_dir.exists():
            raise DeployConfigError(f"Local directory does not exist: {local_dir}")
        if not local_dir.is_dir():
            raise DeployConfigError(f"Local path is not a directory: {local_dir}")
        return local_dir.resolve()
