"""CLI utilities for PawnAI Studio.

This module provides common CLI utilities like Rich console output, tables and
the live amplitude meter.
"""

import os
from contextlib import contextmanager
from typing import Iterable, List

from rich.console import Console
from rich.progress import BarColumn, Progress, TextColumn
from rich.table import Table
from rich.theme import Theme

from pawnai_studio.core.history import HistoryEntry
from pawnai_studio.core.storage import ArtifactInfo

# Create themed console for consistent output
_theme = Theme(
    {
        "info": "cyan",
        "success": "green",
        "warning": "yellow",
        "error": "bold red",
        "debug": "dim white",
    }
)

console = Console(theme=_theme)


def make_device_table(devices: List[dict]) -> Table:
    """Build a Rich Table from the device list returned by list_input_devices().

    Args:
        devices: List of dicts with keys: id, name, driver, channels, rate, is_default

    Returns:
        Configured Rich Table ready to print.
    """
    table = Table(show_header=True, header_style="bold", show_lines=False, expand=False)
    table.add_column("ID", style="cyan", width=4, justify="right")
    table.add_column("Name", min_width=30)
    table.add_column("Driver", style="dim", width=8)
    table.add_column("Ch", justify="right", style="dim", width=4)
    table.add_column("Rate", justify="right", style="dim", width=12)
    table.add_column("", width=9)

    for d in devices:
        default_mark = "[bold green]DEFAULT[/bold green]" if d.get("is_default") else ""
        table.add_row(
            str(d["id"]),
            d["name"],
            d.get("driver", "").upper(),
            str(d.get("channels", "")),
            f"{d.get('rate', '')} Hz",
            default_mark,
        )
    return table


def make_artifact_table(artifacts: Iterable[ArtifactInfo]) -> Table:
    """Build a Rich Table listing stored artifacts."""
    table = Table(show_header=True, header_style="bold", expand=False)
    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("Duration", justify="right")
    table.add_column("Rate", justify="right", style="dim")
    table.add_column("Ch", justify="right", style="dim")
    table.add_column("Refs", justify="right", style="dim")

    for info in artifacts:
        table.add_row(
            info.handle.key,
            f"{info.duration:.2f}s",
            f"{info.format.sample_rate} Hz",
            str(info.format.channels),
            str(info.references),
        )
    return table


def make_history_table(entries: Iterable[HistoryEntry]) -> Table:
    """Build a Rich Table of the active edit commands."""
    table = Table(show_header=True, header_style="bold", expand=False)
    table.add_column("#", style="cyan", justify="right", width=4)
    table.add_column("Edit")
    for entry in entries:
        table.add_row(str(entry.ordinal), entry.command.describe())
    return table


def make_level_progress() -> Progress:
    """Create a Rich Progress instance repurposed as a real-time amplitude meter.

    Usage::

        with make_level_progress() as progress:
            task = progress.add_task("level", total=100, db_text="-- dBFS")
            for sample in subscription.poll():
                progress.update(task, completed=sample.value * 100, db_text=...)

    Returns:
        Configured Rich Progress instance (0–100 % of full scale).
    """
    return Progress(
        TextColumn("📈 Amplitude"),
        BarColumn(
            bar_width=50,
            complete_style="green",
            finished_style="red",
            pulse_style="yellow",
        ),
        TextColumn("[bold]{task.fields[db_text]}[/bold]"),
        console=console,
        transient=False,
        expand=False,
    )


@contextmanager
def suppress_stderr():
    """Context manager to suppress stderr output from libraries like ALSA, JACK.

    Used to hide debug/warning messages from audio subsystems that pollute
    terminal output.
    """
    # Save original stderr file descriptor
    original_stderr_fd = os.dup(2)
    try:
        # Open /dev/null and redirect stderr to it
        null_fd = os.open(os.devnull, os.O_WRONLY)
        os.dup2(null_fd, 2)
        os.close(null_fd)
        yield
    finally:
        # Restore original stderr
        os.dup2(original_stderr_fd, 2)
        os.close(original_stderr_fd)


__all__ = [
    "console",
    "suppress_stderr",
    "make_device_table",
    "make_artifact_table",
    "make_history_table",
    "make_level_progress",
]
