"""Shared Rich console and progress utilities for bandcamp-explorer.

Provides a global Rich console instance and helpers for consistent
output formatting across all CLI commands.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.status import Status

# Global console instance (initialized in CLI)
_console: Console | None = None


def get_console() -> Console:
    """Get the global Rich console instance.

    Raises:
        RuntimeError: If console not initialized (should only happen in tests)
    """
    if _console is None:
        raise RuntimeError("Console not initialized. Call set_console() first.")
    return _console


def set_console(console: Console) -> None:
    """Set the global Rich console instance."""
    global _console
    _console = console


@contextmanager
def make_progress(transient: bool = False) -> Iterator[Progress]:
    """Create a Rich Progress context for tracking a search.

    The total of a task is left unknown (``None``) until the release links
    have been collected, which renders as a pulsing bar.

    Example:
        with make_progress() as progress:
            task = progress.add_task("Requesting data...", total=None)
            progress.update(task, total=40, completed=12)
    """
    columns = [
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TaskProgressColumn(),
        TimeElapsedColumn(),
    ]

    with Progress(*columns, transient=transient, console=get_console()) as progress:
        yield progress


@contextmanager
def status(message: str, spinner: str = "dots") -> Iterator[Status]:
    """Create a Rich Status context for showing ongoing operations.

    Example:
        with status("Loading release...") as st:
            st.update("Parsing...")
    """
    with get_console().status(message, spinner=spinner) as st:
        yield st


def print(*args: Any, **kwargs: Any) -> None:
    """Print to the global console."""
    get_console().print(*args, **kwargs)


def print_error(message: str) -> None:
    get_console().print(f"[red]Error: {escape(message)}[/red]")


def print_warning(message: str) -> None:
    get_console().print(f"[yellow]Warning: {escape(message)}[/yellow]")


def print_success(message: str) -> None:
    get_console().print(f"[green]{message}[/green]")


## Tests


def test_console_roundtrip():
    console = Console(record=True, width=80)
    set_console(console)
    print_warning("3 releases failed")
    print_success("Done")

    text = console.export_text()
    assert "Warning: 3 releases failed" in text
    assert "Done" in text
