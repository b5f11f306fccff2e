"""Configuration file loading and profile resolution.

A config file looks like::

    vars:
      base: /var/www
    defaults:
      username: deploy
      privateKeyPath: ~/.ssh/id_ed25519
    deployments:
      production:
        host: example.com
        localDir: dist
        remoteDir: "{{base}}/site"
        strategy: symlink

Profiles are resolved by merging, from lowest to highest precedence:
built-in defaults, the file's ``defaults``, the selected deployment,
environment variables and command line overrides.
"""

import json
import logging
import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Callable, Optional, Union

import yaml

from .exceptions import DeployConfigError
from .profile import DeploymentProfile, Strategy, TransferMode

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "DEPLOY_CONFIG"
CONFIG_FILENAMES = ("deploy.config.yaml", "deploy.config.yml", "deploy.config.json")

# Environment variables overriding profile keys
ENV_OVERRIDES = {
    "DEPLOY_STRATEGY": "strategy",
    "DEPLOY_TRANSFER": "transfer",
}

BUILTIN_DEFAULTS: dict[str, Any] = {
    "port": 22,
    "strategy": Strategy.INPLACE.value,
    "transfer": TransferMode.SFTP.value,
    "keepReleases": 5,
    "batchSizeMB": 0,
    "concurrency": 1,
    "minRemoteDepth": 2,
    "cleanRemote": False,
    "archiveExisting": False,
}

VAR_PATTERN = re.compile(r"\{\{([A-Za-z0-9_]+)\}\}")

BYTES_PER_MB = 1024 * 1024


# =============================================================================
# Value converters
# =============================================================================


def _to_str(key: str, value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (dict, list)):
        raise DeployConfigError(f"'{key}' must be a string, got {type(value).__name__}")
    return str(value)


def _to_int(key: str, value: Any) -> int:
    if isinstance(value, bool):
        raise DeployConfigError(f"'{key}' must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise DeployConfigError(f"'{key}' must be an integer, got {value!r}") from None


def _to_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off", ""):
        return False
    raise DeployConfigError(f"'{key}' must be a boolean, got {value!r}")


def _to_str_list(key: str, value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value if item is not None]
    raise DeployConfigError(f"'{key}' must be a list of strings, got {value!r}")


def _to_batch_bytes(key: str, value: Any) -> int:
    try:
        megabytes = float(value)
    except (TypeError, ValueError):
        raise DeployConfigError(f"'{key}' must be a number, got {value!r}") from None
    if megabytes < 0:
        raise DeployConfigError(f"'{key}' must not be negative, got {value!r}")
    return int(megabytes * BYTES_PER_MB)


# camelCase config key -> (DeploymentProfile attribute, converter)
FIELDS: dict[str, tuple[str, Callable[[str, Any], Any]]] = {
    "host": ("host", _to_str),
    "port": ("port", _to_int),
    "username": ("username", _to_str),
    "privateKeyPath": ("key_path", _to_str),
    "passphrase": ("passphrase", _to_str),
    "password": ("password", _to_str),
    "localDir": ("local_dir", _to_str),
    "remoteDir": ("remote_dir", _to_str),
    "strategy": ("strategy", lambda key, value: Strategy.from_value(value)),
    "transfer": ("transfer", lambda key, value: TransferMode.from_value(value)),
    "batchSizeMB": ("batch_size_bytes", _to_batch_bytes),
    "concurrency": ("concurrency", _to_int),
    "releasesDir": ("releases_dir", _to_str),
    "keepReleases": ("keep_releases", _to_int),
    "preserveFiles": ("preserve_files", _to_str_list),
    "preserveDir": ("preserve_dir", _to_str),
    "archiveExisting": ("archive_existing", _to_bool),
    "archiveDir": ("archive_dir", _to_str),
    "cleanRemote": ("clean_remote", _to_bool),
    "preCommands": ("pre_commands", _to_str_list),
    "postCommands": ("post_commands", _to_str_list),
    "minRemoteDepth": ("min_remote_depth", _to_int),
    "relayHost": ("relay_host", _to_str),
    "relayPort": ("relay_port", _to_int),
    "relayUsername": ("relay_username", _to_str),
    "relayPrivateKeyPath": ("relay_key_path", _to_str),
}


# =============================================================================
# Loading
# =============================================================================


def find_config_file(
    explicit: Optional[Union[str, Path]] = None,
    cwd: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Optional[Path]:
    """Locate the config file.

    Lookup order: ``explicit``, ``$DEPLOY_CONFIG``, then ``deploy.config.yaml``,
    ``deploy.config.yml`` and ``deploy.config.json`` in ``cwd``.

    Raises:
        DeployConfigError: If an explicitly requested file does not exist
    """
    cwd = cwd or Path.cwd()
    environ = os.environ if environ is None else environ

    if explicit:
        path = (cwd / Path(explicit).expanduser()).resolve()
        if not path.is_file():
            raise DeployConfigError(f"Config file not found: {path}")
        return path

    candidates = []
    env_path = environ.get(CONFIG_ENV_VAR)
    if env_path:
        candidates.append(cwd / Path(env_path).expanduser())
    candidates.extend(cwd / name for name in CONFIG_FILENAMES)

    for candidate in candidates:
        if candidate.is_file():
            return candidate.resolve()
    return None


def apply_vars(data: Any, variables: Mapping[str, Any]) -> Any:
    """Substitute ``{{name}}`` placeholders in every string of ``data``.

    Raises:
        DeployConfigError: If a placeholder has no matching variable
    """
    if isinstance(data, str):
        unknown = sorted(
            {m for m in VAR_PATTERN.findall(data) if m not in variables}
        )
        if unknown:
            raise DeployConfigError(
                f"Unknown template variable(s) {', '.join(unknown)} in '{data}'"
            )
        return VAR_PATTERN.sub(lambda m: str(variables[m.group(1)]), data)
    if isinstance(data, list):
        return [apply_vars(item, variables) for item in data]
    if isinstance(data, dict):
        return {key: apply_vars(value, variables) for key, value in data.items()}
    return data


def load_config_file(path: Union[str, Path]) -> dict[str, Any]:
    """Read a YAML or JSON config file.

    Returns:
        Dictionary with ``defaults`` and ``deployments`` sections (and
        ``path``), with template variables substituted

    Raises:
        DeployConfigError: If the file cannot be read or parsed
    """
    path = Path(path)
    try:
        content = path.read_text(encoding="utf-8")
        if path.suffix == ".json":
            data = json.loads(content)
        else:
            data = yaml.safe_load(content)
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise DeployConfigError(f"Failed to load config {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise DeployConfigError(f"Config {path} must contain a mapping")

    variables = data.pop("vars", None) or {}
    if not isinstance(variables, dict):
        raise DeployConfigError(f"'vars' in {path} must be a mapping")
    data = apply_vars(data, variables)

    for section in ("defaults", "deployments"):
        value = data.get(section) or {}
        if not isinstance(value, dict):
            raise DeployConfigError(f"'{section}' in {path} must be a mapping")
        data[section] = value

    logger.debug("Loaded config from %s", path)
    data["path"] = str(path)
    return data


def load_config(
    explicit: Optional[Union[str, Path]] = None,
    cwd: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> dict[str, Any]:
    """Find and load the config file; an absent file yields empty sections."""
    path = find_config_file(explicit, cwd=cwd, environ=environ)
    if path is None:
        return {"defaults": {}, "deployments": {}}
    return load_config_file(path)


def list_profiles(config: Mapping[str, Any]) -> list[str]:
    """Return the deployment profile names defined in ``config``."""
    return list((config.get("deployments") or {}).keys())


# =============================================================================
# Resolution
# =============================================================================


def _check_keys(section: Mapping[str, Any], origin: str) -> None:
    unknown = sorted(set(section) - set(FIELDS))
    if unknown:
        raise DeployConfigError(f"Unknown key(s) in {origin}: {', '.join(unknown)}")


def resolve_profile(
    config: Mapping[str, Any],
    name: Optional[str] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
    pre_commands: tuple[str, ...] = (),
    post_commands: tuple[str, ...] = (),
    base_dir: Optional[Path] = None,
) -> DeploymentProfile:
    """Merge all configuration layers into one DeploymentProfile.

    Args:
        config: Loaded config (see :func:`load_config`)
        name: Deployment profile to select (None = defaults only)
        overrides: camelCase values from the command line (None values ignored)
        environ: Environment (defaults to ``os.environ``)
        pre_commands: Extra pre-commands appended to the configured list
        post_commands: Extra post-commands appended to the configured list
        base_dir: Directory relative ``localDir`` values are resolved against

    Returns:
        The resolved, immutable profile

    Raises:
        DeployConfigError: On unknown profiles, keys or invalid values
    """
    environ = os.environ if environ is None else environ
    deployments = config.get("deployments") or {}
    defaults = config.get("defaults") or {}

    profile_cfg: Mapping[str, Any] = {}
    if name:
        if name not in deployments:
            available = ", ".join(deployments) or "none"
            raise DeployConfigError(
                f"Unknown deployment profile '{name}'. Available: {available}"
            )
        profile_cfg = deployments[name] or {}
        if not isinstance(profile_cfg, Mapping):
            raise DeployConfigError(f"Deployment '{name}' must be a mapping")

    env_cfg = {
        key: environ[var] for var, key in ENV_OVERRIDES.items() if environ.get(var)
    }
    cli_cfg = {k: v for k, v in (overrides or {}).items() if v is not None}

    _check_keys(defaults, "defaults")
    _check_keys(profile_cfg, f"deployment '{name}'")
    _check_keys(cli_cfg, "overrides")

    merged: dict[str, Any] = {
        **BUILTIN_DEFAULTS,
        **defaults,
        **profile_cfg,
        **env_cfg,
        **cli_cfg,
    }

    values: dict[str, Any] = {}
    for key, raw in merged.items():
        attr, convert = FIELDS[key]
        values[attr] = convert(key, raw)

    values["pre_commands"] = list(values.get("pre_commands", [])) + list(pre_commands)
    values["post_commands"] = list(values.get("post_commands", [])) + list(
        post_commands
    )

    local_dir = values.get("local_dir")
    if local_dir:
        path = Path(local_dir).expanduser()
        if not path.is_absolute():
            path = (base_dir or Path.cwd()) / path
        values["local_dir"] = path

    return DeploymentProfile(**values)
