"""
Entry point of the helper image (``vsnap-runner``).

Exit codes: 0 success, 1 failure, 3 corrupt snapshot layout.
"""

import json
import sys
from pathlib import Path

import typer

from ..constants import RUNNER_EXIT_CORRUPT, RUNNER_EXIT_FAILURE
from . import archiver

app = typer.Typer(
    name="vsnap-runner",
    help="vsnap helper: archive and extract mounted volumes.",
    add_completion=False,
    pretty_exceptions_enable=False,
)


def _fail(message: str, code: int = RUNNER_EXIT_FAILURE):
    typer.echo(message, err=True)
    raise typer.Exit(code)


@app.command()
def snapshot(
    source: Path = typer.Argument(..., help="Mounted source volume"),
    target: Path = typer.Argument(..., help="Mounted snapshot volume"),
    compress: bool = typer.Option(False, "--compress", "-c", help="Compress with zstd"),
):
    """Archive SOURCE into the snapshot volume at TARGET."""
    try:
        archiver.snapshot(source, target, compress)
    except (OSError, RuntimeError) as e:
        _fail(f"snapshot failed: {e}")


@app.command()
def restore(
    source: Path = typer.Argument(..., help="Mounted snapshot volume"),
    target: Path = typer.Argument(..., help="Mounted destination volume"),
    compress: bool = typer.Option(False, "--compress", "-c", help="Archive is zstd compressed"),
    clear: bool = typer.Option(False, "--clear", help="Empty TARGET before extracting"),
):
    """Extract the snapshot at SOURCE into TARGET."""
    try:
        archiver.restore(source, target, compress, clear=clear)
    except archiver.CorruptLayout as e:
        _fail(f"corrupt snapshot: {e}", RUNNER_EXIT_CORRUPT)
    except OSError as e:
        _fail(f"restore failed: {e}")


@app.command()
def size(
    source: Path = typer.Argument(..., help="Mounted snapshot volume"),
    compress: bool = typer.Option(False, "--compress", "-c", help="Archive is zstd compressed"),
):
    """Print the archive size of a snapshot volume."""
    try:
        value = archiver.archive_size(source, compress)
    except archiver.CorruptLayout as e:
        _fail(f"corrupt snapshot: {e}", RUNNER_EXIT_CORRUPT)
    except OSError as e:
        _fail(f"size failed: {e}")
    typer.echo(json.dumps({"size": value}))


@app.command()
def probe(
    target: Path = typer.Argument(..., help="Mounted volume to inspect"),
):
    """Report whether a mounted volume is empty."""
    try:
        empty = archiver.is_empty(target)
    except OSError as e:
        _fail(f"probe failed: {e}")
    typer.echo(json.dumps({"empty": empty}))


def main():
    """Console script entry point."""
    try:
        app()
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    main()
