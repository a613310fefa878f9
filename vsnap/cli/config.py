"""
Configuration commands for vsnap

Show the effective configuration and create a default config file.
"""

from pathlib import Path
from typing import Optional

import typer
from rich.markup import escape

from ..helpers.config import Config, create_default_config
from ..helpers.ui_utils import console, create_table, print_error, print_info, print_success, print_warning

# Create sub-app for config commands
app = typer.Typer(
    help="Configuration management commands",
    no_args_is_help=True,
)


def _current_config(ctx: typer.Context) -> Config:
    state = ctx.find_root().obj
    if state is not None:
        return state.config
    return Config()


@app.command("show")
def show(ctx: typer.Context):
    """Show the effective configuration (file, defaults and env overrides)"""
    config = _current_config(ctx)

    if config.config_file.exists():
        print_info(f"Configuration file: {config.config_file}")
    else:
        print_info(f"No configuration file at {config.config_file}, showing defaults")

    table = create_table(None, [
        ("Section", "cyan", None),
        ("Option", "white", None),
        ("Value", "green", None),
    ])
    for section, options in config.items().items():
        for option, value in options.items():
            table.add_row(escape(section), escape(option), escape(value) or "[dim]-[/dim]")
    console.print(table)

    for problem in config.validate():
        print_warning(problem)


@app.command("init")
def init(
    path: Optional[Path] = typer.Option(
        None,
        "--path",
        "-p",
        help="Where to write the file (default depends on the user)",
    ),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing file"),
):
    """Write a configuration file with default values"""
    try:
        written = create_default_config(path, force=force)
    except FileExistsError as e:
        print_error(str(e))
        print_info("Use --force to overwrite it")
        raise typer.Exit(1)
    except OSError as e:
        print_error(f"Cannot write configuration: {e}")
        raise typer.Exit(1)

    print_success(f"Configuration written to {written}")


def register_to_main_app(main_app: typer.Typer):
    """Register config commands to main CLI app"""
    main_app.add_typer(app, name="config")
