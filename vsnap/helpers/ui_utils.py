"""
CLI Utilities for vsnap

Rich-based helpers for consistent console output across all commands.
"""

from typing import List, Optional

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

console = Console()


def print_success(message: str):
    """Print success message with green checkmark"""
    console.print(f"[green]✓[/green] {escape(message)}")


def print_error(message: str):
    """Print error message with red X"""
    console.print(f"[red]✗[/red] {escape(message)}")


def print_warning(message: str):
    """Print warning message with yellow warning symbol"""
    console.print(f"[yellow]⚠[/yellow]  {escape(message)}")


def print_info(message: str):
    """Print info message with cyan arrow"""
    console.print(f"[cyan]→[/cyan] {escape(message)}")


def print_detail(text: str):
    """Print indented, dimmed diagnostic text (e.g. helper stderr)"""
    for line in text.rstrip().splitlines():
        console.print(f"  [dim]{escape(line)}[/dim]")


def create_table(title: Optional[str], columns: List[tuple]) -> Table:
    """
    Create a styled Rich table

    Args:
        title: Table title
        columns: List of (name, style, width) tuples; width may be None

    Returns:
        Rich Table instance

    Example:
        table = create_table("Snapshots", [
            ("Name", "cyan", 20),
            ("Size", "white", None),
        ])
        table.add_row("pg-before-migration", "12.00 MB")
    """
    table = Table(title=title, show_header=True, header_style="bold green", box=box.SIMPLE)
    for name, style, width in columns:
        table.add_column(name, style=style, width=width)
    return table
