"""
Utility functions for CLI operations.
"""

import click
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

console = Console()


def create_spinner(description: str = "Processing") -> Progress:
    """
    Create a rich spinner for work of unknown length.

    Args:
        description: Description for the spinner

    Returns:
        Progress instance with a single spinner column set
    """
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        TimeElapsedColumn(),
        console=console,
        transient=True
    )


def display_table(data: List[dict], title: Optional[str] = None, columns: Optional[List[str]] = None) -> None:
    """
    Display data in a table format.

    Args:
        data: List of dictionaries to display
        title: Optional table title
        columns: Optional list of column names to display
    """
    if not data:
        console.print("[yellow]No data to display[/yellow]")
        return

    if columns is None:
        columns = list(data[0].keys())

    table = Table(title=title)
    for col in columns:
        table.add_column(col.replace('_', ' ').title(), style="cyan")

    for row in data:
        table.add_row(*[str(row.get(col, '')) for col in columns])

    console.print(table)


def format_file_size(size: int) -> str:
    """Format a byte count as B/KB/MB"""
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


def validate_directory_path(path: str, must_exist: bool = True, create_if_missing: bool = False) -> Path:
    """
    Validate and return a directory Path object.

    Args:
        path: Directory path string
        must_exist: Whether the directory must exist
        create_if_missing: Whether to create directory if missing

    Returns:
        Path object

    Raises:
        click.BadParameter: If path is invalid
    """
    path_obj = Path(path)

    if not path_obj.exists():
        if create_if_missing:
            path_obj.mkdir(parents=True, exist_ok=True)
            console.print(f"[green]Created directory: {path_obj}[/green]")
        elif must_exist:
            raise click.BadParameter(f"Directory does not exist: {path}")
    elif not path_obj.is_dir():
        raise click.BadParameter(f"Path is not a directory: {path}")

    return path_obj
