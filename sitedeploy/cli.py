"""CLI interface for sitedeploy."""

import logging
from pathlib import Path
from typing import Any, Optional

import click

from . import __version__
from .cli_progress import TransferProgressDisplay
from .config import list_profiles, load_config, resolve_profile
from .deployer import Deployer, DeployResult
from .exceptions import DeployError
from .output import OutputFormatter
from .profile import Strategy, TransferMode
from .retry import FailurePolicy, InteractiveFailurePolicy, RetryPolicy
from .utils import format_size

logger = logging.getLogger(__name__)


@click.group()
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", is_flag=True, help="Output in JSON format")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose/debug logging output",
)
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: Any, quiet: bool, json: bool, verbose: bool) -> None:
    """sitedeploy - Deploy a local directory to a remote host over SSH/SFTP."""
    ctx.ensure_object(dict)
    ctx.obj["out"] = OutputFormatter(json_output=json, quiet=quiet)
    ctx.obj["verbose"] = verbose

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
        # paramiko is very chatty at DEBUG
        logging.getLogger("paramiko").setLevel(logging.INFO)
        logging.getLogger("sitedeploy").setLevel(logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)


def _result_items(result: DeployResult) -> list[tuple[str, Any]]:
    items: list[tuple[str, Any]] = [
        ("Strategy", result.strategy.value),
        ("Transfer", result.transfer.value),
        ("Target", result.target_dir),
        (
            "Uploaded",
            f"{result.uploaded_files} file(s), {format_size(result.uploaded_bytes)}",
        ),
    ]
    if result.release:
        items.append(("Release", result.release))
    if result.archived_to:
        items.append(("Archived to", result.archived_to))
    if result.pruned_releases:
        items.append(("Pruned", ", ".join(result.pruned_releases)))
    items.append(("Duration", f"{result.duration:.1f}s"))
    return items


def _result_dict(result: DeployResult) -> dict[str, Any]:
    return {
        "success": result.success,
        "strategy": result.strategy.value,
        "transfer": result.transfer.value,
        "target_dir": result.target_dir,
        "release": result.release,
        "uploaded_files": result.uploaded_files,
        "uploaded_bytes": result.uploaded_bytes,
        "pruned_releases": result.pruned_releases,
        "archived_to": result.archived_to,
        "error": str(result.error) if result.error else None,
        "duration": round(result.duration, 3),
    }


@main.command()
@click.argument("profile_name", required=False, metavar="PROFILE")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(dir_okay=False),
    help="Config file (default: $DEPLOY_CONFIG or deploy.config.yaml/yml/json)",
)
@click.option("--profile", "-p", "profile_option", help="Deployment profile name")
@click.option("--host", help="Target host")
@click.option("--port", type=int, help="SSH port")
@click.option("--username", "-u", help="SSH username")
@click.option("--key", "key_path", help="Private key file")
@click.option("--password", envvar="DEPLOY_PASSWORD", help="SSH password")
@click.option("--local", "local_dir", help="Local directory to deploy")
@click.option("--remote", "remote_dir", help="Remote directory")
@click.option(
    "--strategy",
    type=click.Choice([s.value for s in Strategy]),
    help="Release strategy",
)
@click.option(
    "--transfer",
    type=click.Choice([t.value for t in TransferMode]),
    help="Transfer mode",
)
@click.option("--releases-dir", help="Releases root (symlink strategy)")
@click.option("--keep-releases", type=int, help="Number of releases to keep")
@click.option(
    "--batch-size", type=float, help="Tar batch size in MB (0 = single archive)"
)
@click.option("--concurrency", type=int, help="Parallel tar workers")
@click.option(
    "--clean/--no-clean", default=None, help="Empty the remote directory first"
)
@click.option(
    "--archive/--no-archive",
    default=None,
    help="Rename the existing remote directory aside first",
)
@click.option("--archive-dir", help="Where archived directories are moved")
@click.option("--min-depth", type=int, help="Minimum depth for destructive paths")
@click.option("--preserve-dir", help="Preferred source of preserved files")
@click.option("--relay-host", help="Relay (jump) host for relay transfer")
@click.option("--relay-port", type=int, help="Relay SSH port")
@click.option("--relay-username", help="Relay SSH username")
@click.option("--relay-key", help="Relay private key file")
@click.option("--pre", multiple=True, help="Extra pre-command (repeatable)")
@click.option("--post", multiple=True, help="Extra post-command (repeatable)")
@click.option(
    "--dry-run", "--check", "dry_run", is_flag=True, help="Show the plan and exit"
)
@click.option(
    "--interactive",
    is_flag=True,
    help="Ask to retry, skip or quit on each failed remote operation",
)
@click.option("--no-progress", is_flag=True, help="Disable the progress display")
@click.pass_context
def deploy(
    ctx: Any,
    profile_name: Optional[str],
    config_path: Optional[str],
    profile_option: Optional[str],
    host: Optional[str],
    port: Optional[int],
    username: Optional[str],
    key_path: Optional[str],
    password: Optional[str],
    local_dir: Optional[str],
    remote_dir: Optional[str],
    strategy: Optional[str],
    transfer: Optional[str],
    releases_dir: Optional[str],
    keep_releases: Optional[int],
    batch_size: Optional[float],
    concurrency: Optional[int],
    clean: Optional[bool],
    archive: Optional[bool],
    archive_dir: Optional[str],
    min_depth: Optional[int],
    preserve_dir: Optional[str],
    relay_host: Optional[str],
    relay_port: Optional[int],
    relay_username: Optional[str],
    relay_key: Optional[str],
    pre: tuple[str, ...],
    post: tuple[str, ...],
    dry_run: bool,
    interactive: bool,
    no_progress: bool,
) -> None:
    """Deploy PROFILE (or the config defaults) to the remote host.

    Examples:
        sitedeploy deploy production
        sitedeploy deploy staging --transfer tar --batch-size 50 --concurrency 4
        sitedeploy deploy --host example.com --local dist --remote /var/www/site
    """
    out: OutputFormatter = ctx.obj["out"]

    overrides = {
        "host": host,
        "port": port,
        "username": username,
        "privateKeyPath": key_path,
        "password": password,
        "localDir": local_dir,
        "remoteDir": remote_dir,
        "strategy": strategy,
        "transfer": transfer,
        "releasesDir": releases_dir,
        "keepReleases": keep_releases,
        "batchSizeMB": batch_size,
        "concurrency": concurrency,
        "cleanRemote": clean,
        "archiveExisting": archive,
        "archiveDir": archive_dir,
        "minRemoteDepth": min_depth,
        "preserveDir": preserve_dir,
        "relayHost": relay_host,
        "relayPort": relay_port,
        "relayUsername": relay_username,
        "relayPrivateKeyPath": relay_key,
    }

    try:
        config = load_config(config_path)
        if config.get("path"):
            out.info(f"Loaded config from {Path(config['path']).name}")

        profile = resolve_profile(
            config,
            name=profile_option or profile_name,
            overrides=overrides,
            pre_commands=pre,
            post_commands=post,
        )

        policy: FailurePolicy = (
            InteractiveFailurePolicy() if interactive else RetryPolicy()
        )

        if dry_run:
            plan = Deployer(policy=policy).plan(profile)
            if out.json_output:
                out.output_json(plan.to_dict())
            else:
                items = [
                    (key.replace("_", " ").capitalize(), value)
                    for key, value in plan.to_dict().items()
                ]
                out.print_summary("Deployment Plan (dry run)", items)
            return

        out.info(
            f"Deploying {profile.local_dir} to {profile.connection.label}:"
            f"{profile.remote_dir} ({profile.strategy.value}/{profile.transfer.value})"
        )

        show_progress = not (
            out.quiet or out.json_output or no_progress or interactive
        )
        if show_progress:
            with TransferProgressDisplay() as display:
                deployer = Deployer(policy=policy, progress=display.create_tracker())
                result = deployer.run(profile)
        else:
            result = Deployer(policy=policy).run(profile)

        if out.json_output:
            out.output_json(_result_dict(result))
        elif result.success:
            out.print_summary("Deployment Complete", _result_items(result))

        if not result.success:
            out.error(f"Deployment failed: {result.error}")
            ctx.exit(1)
        else:
            out.success("Deployment succeeded.")

    except KeyboardInterrupt:
        out.warning("\nDeployment cancelled by user")
        ctx.exit(130)  # Standard exit code for SIGINT
    except DeployError as e:
        out.error(str(e))
        ctx.exit(1)


@main.command(name="list")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(dir_okay=False),
    help="Config file (default: $DEPLOY_CONFIG or deploy.config.yaml/yml/json)",
)
@click.pass_context
def list_command(ctx: Any, config_path: Optional[str]) -> None:
    """List the deployment profiles defined in the config file."""
    out: OutputFormatter = ctx.obj["out"]

    try:
        config = load_config(config_path)
    except DeployError as e:
        out.error(str(e))
        ctx.exit(1)
        return

    profiles = list_profiles(config)
    if out.json_output:
        out.output_json({"config": config.get("path"), "profiles": profiles})
        return

    if not config.get("path"):
        out.warning("No config file found.")
        return
    if not profiles:
        out.warning(f"No deployments defined in {config['path']}")
        return
    for name in profiles:
        out.print(name)


if __name__ == "__main__":
    main()
