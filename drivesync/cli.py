"""CLI interface for drivesync."""

import logging
import time
from pathlib import Path
from typing import Any, Optional

import click

from .api import DriveClient
from .config import config
from .exceptions import DriveSyncError
from .output import OutputFormatter
from .sync import FileStatus, SyncEngine
from .utils import format_size, format_timestamp, short_hash

logger = logging.getLogger(__name__)


def _create_engine(ctx: Any, connect: bool = True) -> SyncEngine:
    """Build a sync engine from the global CLI options and the config.

    With ``connect=False`` no API client is created, so commands that only
    read or edit the local sync state work without an API key.
    """
    client = (
        DriveClient(api_key=ctx.obj.get("api_key"), api_url=config.api_url)
        if connect
        else None
    )
    state_dir = ctx.obj.get("state_dir") or config.state_dir
    return SyncEngine(
        client,
        Path(state_dir),
        poll_interval=config.poll_interval,
        max_workers=config.workers,
    )


def _status_row(status: FileStatus) -> list[str]:
    fingerprint = status.fingerprint
    return [
        status.local_path,
        status.remote_id or "-",
        status.direction.value,
        status.change.value,
        format_size(fingerprint.size) if fingerprint else "-",
        short_hash(fingerprint.sha256 if fingerprint else None),
        format_timestamp(status.last_synced_at),
        status.last_error or "",
    ]


@click.group()
@click.option(
    "--api-key", "-k", envvar="DRIVESYNC_API_KEY", help="Remote storage API key"
)
@click.option(
    "--state-dir",
    type=click.Path(file_okay=False),
    envvar="DRIVESYNC_STATE_DIR",
    help="Directory holding the sync state",
)
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", is_flag=True, help="Output in JSON format")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose/debug logging output",
)
@click.version_option(package_name="drivesync")
@click.pass_context
def main(
    ctx: Any,
    api_key: Optional[str],
    state_dir: Optional[str],
    quiet: bool,
    json: bool,
    verbose: bool,
) -> None:
    """drivesync - Keep local files in sync with cloud storage."""
    ctx.ensure_object(dict)
    ctx.obj["api_key"] = api_key
    ctx.obj["state_dir"] = state_dir
    ctx.obj["out"] = OutputFormatter(json_output=json, quiet=quiet)

    # Configure logging based on verbose flag
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
        logging.getLogger("drivesync").setLevel(logging.DEBUG)
    else:
        logging.basicConfig(
            level=logging.WARNING,
            format="%(levelname)s: %(message)s",
        )


@main.command()
@click.option(
    "--api-key",
    "-k",
    prompt="Enter your API key",
    hide_input=True,
    help="Remote storage API key",
)
@click.pass_context
def init(ctx: Any, api_key: str) -> None:
    """Store the API key in ~/.config/drivesync/config."""
    out: OutputFormatter = ctx.obj["out"]

    out.info("Validating API key...")
    try:
        with DriveClient(api_key=api_key, api_url=config.api_url) as client:
            client.get_logged_user()
        out.success("API key is valid")
    except DriveSyncError as e:
        out.error(f"API key validation failed: {e}")
        if not click.confirm("Save API key anyway?", default=False):
            out.warning("Configuration cancelled.")
            ctx.exit(1)

    config.save_api_key(api_key)
    out.print_summary(
        "Initialization Complete",
        [
            ("Status", "Configuration saved"),
            ("Config file", str(config.get_config_path())),
        ],
    )


@main.command()
@click.argument("path", type=click.Path(exists=True))
@click.option(
    "--ignore",
    "-i",
    multiple=True,
    help="Glob pattern to skip when pushing a directory (repeatable)",
)
@click.option(
    "--exclude-dot-files", is_flag=True, help="Skip dot files in directory pushes"
)
@click.option(
    "--no-wait",
    is_flag=True,
    help="Fail instead of waiting if the file is already being transferred",
)
@click.pass_context
def push(
    ctx: Any,
    path: str,
    ignore: tuple[str, ...],
    exclude_dot_files: bool,
    no_wait: bool,
) -> None:
    """Upload PATH and keep it in sync.

    PATH may be a file or a directory; for a directory every file below
    it is pushed and tracked individually.

    Examples:
        drivesync push ~/notes/todo.md
        drivesync push ~/notes -i "*.tmp" --exclude-dot-files
    """
    out: OutputFormatter = ctx.obj["out"]

    try:
        with _create_engine(ctx) as engine:
            if Path(path).is_dir():
                results = engine.push_directory(
                    path,
                    ignore_patterns=list(ignore),
                    exclude_dot_files=exclude_dot_files,
                )
                failed = [r for r in results if not r.ok]
                if out.json_output:
                    out.output_json(
                        [
                            {
                                "local_path": r.local_path,
                                "remote_id": r.remote_id,
                                "error": r.error,
                            }
                            for r in results
                        ]
                    )
                else:
                    for r in failed:
                        out.error(f"{r.local_path}: {r.error}")
                    out.info(
                        f"Directory upload: {len(results) - len(failed)} "
                        f"succeeded, {len(failed)} failed"
                    )
                if failed:
                    ctx.exit(1)
                return

            remote_id = engine.push(path, wait=not no_wait)
            if out.json_output:
                out.output_json({"local_path": path, "remote_id": remote_id})
            else:
                out.success(f"Uploaded and synced {path} -> {remote_id}")
    except DriveSyncError as e:
        out.error(str(e))
        ctx.exit(1)


@main.command()
@click.argument("remote_id")
@click.argument("destination", type=click.Path())
@click.option(
    "--overwrite",
    is_flag=True,
    help="Overwrite the destination file if it already exists",
)
@click.pass_context
def pull(ctx: Any, remote_id: str, destination: str, overwrite: bool) -> None:
    """Download REMOTE_ID to DESTINATION and track it."""
    out: OutputFormatter = ctx.obj["out"]

    try:
        with _create_engine(ctx) as engine:
            record = engine.pull(remote_id, destination, overwrite=overwrite)
    except DriveSyncError as e:
        out.error(str(e))
        ctx.exit(1)
        return

    if out.json_output:
        out.output_json(record.to_dict())
    else:
        out.success(f"Pulled {remote_id} -> {record.local_path}")


@main.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.argument("remote_id")
@click.pass_context
def link(ctx: Any, path: str, remote_id: str) -> None:
    """Sync PATH with the existing remote object REMOTE_ID.

    Nothing is uploaded now; the next sync cycle pushes the local content.
    """
    out: OutputFormatter = ctx.obj["out"]

    try:
        with _create_engine(ctx, connect=False) as engine:
            record = engine.link(path, remote_id)
    except DriveSyncError as e:
        out.error(str(e))
        ctx.exit(1)
        return

    out.success(f"Sync added for {record.local_path} -> {remote_id}")


@main.command()
@click.argument("path", type=click.Path())
@click.pass_context
def untrack(ctx: Any, path: str) -> None:
    """Stop syncing PATH. The remote object is kept."""
    out: OutputFormatter = ctx.obj["out"]

    try:
        with _create_engine(ctx, connect=False) as engine:
            engine.untrack(path)
    except DriveSyncError as e:
        out.error(str(e))
        ctx.exit(1)
        return

    out.success(f"Removed sync for {path}")


@main.command()
@click.pass_context
def status(ctx: Any) -> None:
    """List tracked files and whether they need to be pushed.

    The Error column shows the last failed background push of a file,
    including failures of a `drivesync run` loop in another process.
    """
    out: OutputFormatter = ctx.obj["out"]

    try:
        with _create_engine(ctx, connect=False) as engine:
            statuses = engine.status()
    except DriveSyncError as e:
        out.error(str(e))
        ctx.exit(1)
        return

    if out.json_output:
        out.output_json([s.to_dict() for s in statuses])
        return

    if not statuses:
        out.info("No tracked files.")
        return

    out.print_table(
        [
            "Path",
            "Remote ID",
            "Direction",
            "Status",
            "Size",
            "SHA-256",
            "Last sync",
            "Error",
        ],
        [_status_row(s) for s in statuses],
        title="Synced files",
    )


@main.command()
@click.pass_context
def sync(ctx: Any) -> None:
    """Run a single scan and push every changed file."""
    out: OutputFormatter = ctx.obj["out"]

    try:
        with _create_engine(ctx) as engine:
            result = engine.sync_once()
    except DriveSyncError as e:
        out.error(str(e))
        ctx.exit(1)
        return

    if out.json_output:
        out.output_json(
            {
                "scanned": len(result.decisions),
                "pushed": result.pushed,
                "failed": result.failed,
                "deferred": result.deferred,
            }
        )
    else:
        out.info(
            f"Scanned {len(result.decisions)} file(s): {len(result.pushed)} "
            f"pushed, {len(result.failed)} failed"
        )
        for path, error in result.failed.items():
            out.error(f"{path}: {error}")

    if result.failed:
        ctx.exit(1)


@main.command()
@click.option(
    "--interval",
    type=float,
    default=None,
    help="Seconds between scans (default: from config, 30)",
)
@click.pass_context
def run(ctx: Any, interval: Optional[float]) -> None:
    """Run the sync loop in the foreground until interrupted."""
    out: OutputFormatter = ctx.obj["out"]

    try:
        engine = _create_engine(ctx)
        if interval is not None:
            engine.scheduler.poll_interval = interval
        with engine:
            engine.start()
            out.info(
                f"Syncing every {engine.scheduler.poll_interval}s, "
                "press Ctrl+C to stop"
            )
            try:
                while engine.scheduler.is_running:
                    time.sleep(0.5)
            except KeyboardInterrupt:
                out.info("Stopping...")
            fatal_error = engine.scheduler.fatal_error
    except DriveSyncError as e:
        out.error(str(e))
        ctx.exit(1)
        return

    if fatal_error is not None:
        out.error(str(fatal_error))
        ctx.exit(1)


if __name__ == "__main__":
    main()
