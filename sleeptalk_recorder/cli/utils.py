"""CLI utilities for SleepTalk Recorder.

This module provides common CLI utilities like Rich console output, tables and
the live gate meter.
"""

import datetime
import os
from contextlib import contextmanager
from typing import List

import soundfile as sf
from rich.console import Console
from rich.progress import BarColumn, Progress, TextColumn
from rich.table import Table
from rich.theme import Theme

from sleeptalk_recorder.core.capture import ArtifactRef
from sleeptalk_recorder.core.config import GateSettings

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

# The meter bar spans the full dBFS range
METER_SPAN = 160


def make_device_table(devices: List[dict]) -> Table:
    """Build a Rich Table from the device list returned by RecordingEngine.list_devices().

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


def _describe_duration(artifact: ArtifactRef) -> str:
    try:
        return f"{sf.info(str(artifact.path)).duration:.1f}s"
    except (RuntimeError, OSError):
        return "?"


def make_recordings_table(recordings: List[ArtifactRef]) -> Table:
    """Build a Rich Table listing recordings, newest first."""
    table = Table(show_header=True, header_style="bold", show_lines=False, expand=False)
    table.add_column("#", style="cyan", width=4, justify="right")
    table.add_column("Name", min_width=30)
    table.add_column("Recorded", style="dim", width=19)
    table.add_column("Length", justify="right", width=8)
    table.add_column("Size", justify="right", style="dim", width=10)

    for index, artifact in enumerate(recordings, start=1):
        recorded = artifact.created_at or datetime.datetime.fromtimestamp(0)
        try:
            size = f"{artifact.path.stat().st_size / 1024:.0f} KiB"
        except OSError:
            size = "?"
        table.add_row(
            str(index),
            artifact.name,
            recorded.strftime("%Y-%m-%d %H:%M:%S"),
            _describe_duration(artifact),
            size,
        )
    return table


def make_settings_table(settings: GateSettings) -> Table:
    """Two-column grid describing the noise gate configuration."""
    grid = Table.grid(padding=(0, 1))
    grid.add_column(style="dim", justify="right")
    grid.add_column()
    grid.add_row("Noise threshold:", f"{settings.noise_threshold:.1f} dBFS")
    grid.add_row("Silence grace:", f"{settings.silence_grace_period:.1f}s")
    grid.add_row("Warmup:", f"{settings.min_recording_warmup:.1f}s")
    grid.add_row("Poll interval:", f"{settings.poll_interval * 1000:.0f} ms")
    return grid


def make_gate_progress() -> Progress:
    """Create a Rich Progress instance repurposed as the live gate meter.

    Usage::

        with make_gate_progress() as progress:
            task = progress.add_task("gate", total=METER_SPAN, db_text="-- dBFS", state="", status="")
            while monitoring:
                progress.update(task, completed=level + METER_SPAN, db_text=f"{level:.1f} dBFS", ...)
                time.sleep(0.1)

    Returns:
        Configured Rich Progress instance (-160–0 dBFS scale).
    """
    return Progress(
        TextColumn("{task.fields[state]:<10}"),
        BarColumn(
            bar_width=50,
            complete_style="green",
            finished_style="green",
            pulse_style="yellow",
        ),
        TextColumn("[bold]{task.fields[db_text]}[/bold]"),
        TextColumn("{task.fields[status]}"),
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
    original_stderr_fd = os.dup(2)
    try:
        null_fd = os.open(os.devnull, os.O_WRONLY)
        os.dup2(null_fd, 2)
        os.close(null_fd)
        yield
    finally:
        os.dup2(original_stderr_fd, 2)
        os.close(original_stderr_fd)


__all__ = [
    "console",
    "suppress_stderr",
    "make_device_table",
    "make_recordings_table",
    "make_settings_table",
    "make_gate_progress",
    "METER_SPAN",
]
