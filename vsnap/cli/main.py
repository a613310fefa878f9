"""
Main CLI application using Typer

Entry point for the ``vsnap`` command.
"""

import configparser
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

import typer
from rich.markup import escape

from ..constants import EXIT_CANCELLED, EXIT_ERROR, EXIT_OK, VERSION
from ..cores.docker_client import DockerClient
from ..cores.inventory import VolumeInventory
from ..cores.progress import LoggingProgressSink, ProgressReporter, RichProgressSink
from ..cores.restore_manager import SnapshotRestorer
from ..cores.snapshot_manager import SnapshotProducer
from ..errors import VsnapError, describe_side_effects
from ..helpers.config import Config
from ..helpers.logging import get_logger, log_manager
from ..helpers.system_utils import SystemUtils
from ..helpers.ui_utils import (
    console,
    create_table,
    print_detail,
    print_error,
    print_info,
    print_success,
    print_warning,
)
from . import config as config_commands

logger = get_logger(__name__)

app = typer.Typer(
    name="vsnap",
    help="vsnap - snapshot and restore Docker volumes",
    add_completion=False,
)

config_commands.register_to_main_app(app)


@dataclass
class CliState:
    config: Config
    debug: bool = False


@app.callback()
def main_callback(
    ctx: typer.Context,
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        help="Path to configuration file",
        envvar="VSNAP_CONFIG",
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Enable debug output and tracebacks",
    ),
):
    """
    vsnap - snapshot and restore Docker volumes

    Snapshots are ordinary Docker volumes holding one archive of the source.
    """
    try:
        config = Config(config_path)
    except (OSError, configparser.Error, UnicodeDecodeError) as e:
        print_error(f"Cannot load configuration: {e}")
        raise typer.Exit(EXIT_ERROR)
    log_manager.setup(
        level="DEBUG" if debug else config.get("logging", "level", "WARNING"),
        log_file=config.get("logging", "file") or None,
        max_size_mb=config.getint("logging", "max_size_mb", 10),
        backup_count=config.getint("logging", "backup_count", 3),
    )
    ctx.obj = CliState(config=config, debug=debug)


def _state(ctx: typer.Context) -> CliState:
    if ctx.obj is None:
        ctx.obj = CliState(config=Config())
    return ctx.obj


@contextmanager
def handle_errors(state: CliState) -> Iterator[None]:
    """Print vsnap errors and exit with the code of their kind."""
    try:
        yield
    except VsnapError as e:
        logger.debug(f"{type(e).__name__}: {e.message}", extra={"side_effects": e.side_effects})
        if state.debug:
            raise
        print_error(e.message)
        stderr = getattr(e, "stderr", "")
        if stderr:
            console.print("[dim]Helper output:[/dim]")
            print_detail(stderr)
        note = describe_side_effects(e)
        if note:
            print_info(note)
        raise typer.Exit(e.exit_code)
    except KeyboardInterrupt:
        print_warning("Cancelled by user")
        raise typer.Exit(EXIT_CANCELLED)


@contextmanager
def connected(state: CliState) -> Iterator[DockerClient]:
    client = DockerClient.from_config(state.config).connect()
    try:
        yield client
    finally:
        client.close()


def _reporter() -> ProgressReporter:
    sink = RichProgressSink(console=console, transient=True) if console.is_terminal else LoggingProgressSink()
    return ProgressReporter(sink)


@app.command()
def create(
    ctx: typer.Context,
    source: str = typer.Argument(..., help="Source volume"),
    snapshot: str = typer.Argument(..., help="Name of the new snapshot volume"),
    compress: bool = typer.Option(
        False,
        "--compress",
        "-c",
        help="Compress the archive with zstd (default from config)",
    ),
    compression: bool = typer.Option(
        False,
        "--compression",
        help="Alias for --compress",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Snapshot even if running containers use the source volume",
    ),
):
    """Create a snapshot of a volume"""
    state = _state(ctx)
    use_compression = True if (compress or compression) else None

    with handle_errors(state), connected(state) as client, _reporter() as reporter:
        producer = SnapshotProducer(client, state.config, reporter=reporter)
        result = producer.create(source, snapshot, compress=use_compression,
                                 allow_in_use=True if force else None)

    mode = "compressed" if result.compressed else "uncompressed"
    print_success(f"Snapshot {result.name} created from {source} ({mode})")


@app.command()
def restore(
    ctx: typer.Context,
    snapshot: str = typer.Argument(..., help="Snapshot volume"),
    destination: str = typer.Argument(..., help="Destination volume"),
    overwrite: bool = typer.Option(
        False,
        "--overwrite",
        "-o",
        help="Replace the contents of a non-empty destination",
    ),
    drop: bool = typer.Option(
        False,
        "--drop",
        "-d",
        help="Remove the snapshot after a successful restore",
    ),
):
    """Restore a snapshot into a volume"""
    state = _state(ctx)

    with handle_errors(state), connected(state) as client, _reporter() as reporter:
        restorer = SnapshotRestorer(client, state.config, reporter=reporter)
        restorer.restore(snapshot, destination, overwrite=overwrite, drop_snapshot=drop)

    print_success(f"Snapshot {snapshot} restored into {destination}")
    if restorer.dropped:
        print_info(f"Snapshot {snapshot} dropped")
    elif drop:
        print_warning(f"Snapshot {snapshot} was kept: it could not be removed")


@app.command("list")
def list_snapshots(
    ctx: typer.Context,
    size: bool = typer.Option(
        False,
        "--size",
        "-s",
        help="Compute archive sizes (starts one helper per snapshot)",
    ),
):
    """List snapshots"""
    state = _state(ctx)

    with handle_errors(state), connected(state) as client:
        infos = VolumeInventory(client, state.config).list(compute_sizes=size)

    if not infos:
        print_info("No snapshots found")
        return

    oldest = datetime.min.replace(tzinfo=timezone.utc)
    infos.sort(key=lambda i: (i.created_at or oldest, i.name), reverse=True)

    columns = [
        ("Name", "cyan", None),
        ("Created", "white", None),
        ("Compressed", "white", None),
        ("Source", "dim", None),
    ]
    if size:
        columns.append(("Size", "green", None))
    table = create_table("Snapshots", columns)

    for info in infos:
        created = info.created_at.astimezone().strftime("%Y-%m-%d %H:%M:%S") if info.created_at else "-"
        if info.compressed is None:
            compressed = "-"
        else:
            compressed = "yes" if info.compressed else "no"
        row = [escape(info.name), created, compressed, escape(info.source_volume or "-")]
        if size:
            row.append(SystemUtils.format_bytes(info.size_bytes))
        table.add_row(*row)

    console.print(table)

    for info in infos:
        if info.size_error:
            print_warning(f"{info.name}: {info.size_error}")


@app.command()
def info(
    ctx: typer.Context,
    snapshot: str = typer.Argument(..., help="Snapshot volume"),
    size: bool = typer.Option(False, "--size", "-s", help="Compute the archive size"),
):
    """Show details of one snapshot"""
    state = _state(ctx)

    with handle_errors(state), connected(state) as client:
        inventory = VolumeInventory(client, state.config)
        details = inventory.get(snapshot)
        size_bytes = inventory.size(details) if size else None

    table = create_table(f"Snapshot {escape(details.name)}", [
        ("Property", "cyan", None),
        ("Value", "white", None),
    ])
    table.add_row("Created", details.created_at.astimezone().strftime("%Y-%m-%d %H:%M:%S"))
    table.add_row("Compressed", "yes" if details.compressed else "no")
    table.add_row("Source", escape(details.source_volume or "-"))
    table.add_row("Format version", details.schema_version)
    if size:
        table.add_row("Size", SystemUtils.format_bytes(size_bytes))
    console.print(table)


@app.command()
def drop(
    ctx: typer.Context,
    snapshot: str = typer.Argument(..., help="Snapshot volume to remove"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """Remove a snapshot"""
    state = _state(ctx)

    if not yes and not typer.confirm(f"Remove snapshot {snapshot}?", default=False):
        print_warning("Aborted")
        raise typer.Exit(EXIT_OK)

    with handle_errors(state), connected(state) as client:
        VolumeInventory(client, state.config).drop(snapshot)

    print_success(f"Snapshot {snapshot} removed")


@app.command()
def version():
    """Show version information"""
    console.print(f"[cyan]vsnap[/cyan] v{VERSION}")


def cli_main():
    """
    Entry point for CLI

    This function is called by the console script entry point.
    """
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled by user[/yellow]")
        sys.exit(EXIT_CANCELLED)
    except VsnapError as e:
        console.print(f"[red]Error:[/red] {escape(e.message)}")
        if "--debug" in sys.argv:
            raise
        sys.exit(e.exit_code)
    except Exception as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        if "--debug" in sys.argv:
            raise
        sys.exit(1)


if __name__ == "__main__":
    cli_main()
