"""CLI commands for PawnAI Studio.

This module provides all command-line interface commands using Typer.
"""

import sys
import time
from pathlib import Path
from typing import Optional

import typer
import yaml
from loguru import logger
from rich.panel import Panel
from rich.table import Table

from pawnai_studio.core import (
    AmplitudeReducer,
    FileArtifactStore,
    MicrophoneFrameSource,
    Project,
    RecordingController,
    RecordingState,
    SessionJournal,
    SyntheticFrameSource,
    TransformPipeline,
    export_artifact,
    list_input_devices,
)
from pawnai_studio.core.config import AppConfig, FILE_EXTENSION, RATE, STORAGE_DIR
from pawnai_studio.core.edits import commands_from_list
from pawnai_studio.core.errors import StudioError
from pawnai_studio.core.processing import amplitude_to_db
from pawnai_studio.cli.utils import (
    console,
    make_artifact_table,
    make_device_table,
    make_history_table,
    make_level_progress,
    suppress_stderr,
)

app = typer.Typer(help="Audio capture and non-destructive editing CLI")

app_config = AppConfig()
default_storage_dir = str(app_config.get("storage_dir", STORAGE_DIR))
default_rate = int(app_config.get("rate", RATE))


def _configure_logging(verbose: bool) -> None:
    """Configure loguru log level based on verbose flag."""
    logger.remove()
    if verbose:
        logger.add(sys.stderr, level="DEBUG")
    else:
        logger.add(sys.stderr, level="WARNING")


def _open_store(storage: str) -> FileArtifactStore:
    return FileArtifactStore(storage, file_format=str(app_config.get("file_extension", FILE_EXTENSION)))


def _report_failure(controller: RecordingController) -> None:
    """Print the capture error, keep any partial audio and exit."""
    error = controller.session.last_error
    preserved = controller.reset()
    console.print(f"[error]✗ Recording failed: {error}[/error]")
    if preserved is not None:
        console.print(f"[warning]Partial capture kept as {preserved.key}[/warning]")
    sys.exit(1)


@app.command()
def list_devices(
    driver: Optional[str] = typer.Option(
        None, help="Filter by driver type: pulse, alsa, jack, usb, default"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Show debug output from audio libraries"
    ),
):
    """List all available input audio devices."""
    try:
        if verbose:
            devices = list_input_devices(driver_filter=driver)
        else:
            with suppress_stderr():
                devices = list_input_devices(driver_filter=driver)
    except (ImportError, OSError) as e:
        console.print(f"[error]✗ Audio devices unavailable: {e}[/error]")
        sys.exit(1)

    title = "Available Input Devices"
    if driver:
        title += f" (filtered by: {driver})"
    console.print(Panel(make_device_table(devices), title=f"[bold]{title}[/bold]"))


@app.command()
def record(
    duration: Optional[float] = typer.Option(
        None, help="Recording duration in seconds. Leave empty to record until Ctrl+C."
    ),
    storage: str = typer.Option(default_storage_dir, help="Artifact storage directory"),
    rate: int = typer.Option(default_rate, help="Sample rate in Hz"),
    device_id: Optional[int] = typer.Option(
        None, help="Audio device ID to use. Leave empty for the system default input."
    ),
    gain: float = typer.Option(
        1.0, help="Input gain/amplification factor (1.0=no change, 2.0=+6dB, 0.5=-6dB)"
    ),
    synthetic: bool = typer.Option(
        False, "--synthetic", help="Record a generated test tone instead of a microphone"
    ),
    frequency: float = typer.Option(440.0, help="Test tone frequency in Hz (with --synthetic)"),
    export: Optional[Path] = typer.Option(
        None, help="Also export the capture to this audio file (flac, wav, ogg)"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Show debug output from audio libraries"
    ),
):
    """Record a new raw capture into the artifact store."""
    _configure_logging(verbose)

    store = _open_store(storage)
    journal = SessionJournal(app_config.get_log_path(Path(storage)))
    settings = app_config.capture_settings()
    settings.rate = rate

    if synthetic:
        source = SyntheticFrameSource(
            sample_rate=rate,
            channels=settings.channels,
            frame_size=settings.frame_size,
            frequency=frequency,
            realtime=True,
        )
    else:
        source = MicrophoneFrameSource(
            device_id=device_id,
            sample_rate=rate,
            channels=settings.channels,
            frame_size=settings.frame_size,
            gain_factor=gain,
        )

    reducer = AmplitudeReducer(app_config.visualization_settings())
    controller = RecordingController(source, store, reducer, settings, journal)
    subscription = reducer.subscribe()

    try:
        if verbose or synthetic:
            session = controller.start()
        else:
            with suppress_stderr():
                session = controller.start()
    except StudioError as e:
        console.print(f"[error]✗ Could not start recording: {e}[/error]")
        sys.exit(1)

    info_grid = Table.grid(padding=(0, 1))
    info_grid.add_column(style="dim", justify="right")
    info_grid.add_column()
    info_grid.add_row("Session ID:", session.session_id)
    info_grid.add_row("Source:", "test tone" if synthetic else f"device {device_id if device_id is not None else 'default'}")
    info_grid.add_row("Sample Rate:", f"{rate} Hz")
    info_grid.add_row("Duration:", f"{duration}s" if duration else "until Ctrl+C")
    info_grid.add_row("Storage:", str(store.storage_dir))
    console.print(Panel(info_grid, title="[bold]🎙 Recording Session[/bold]", border_style="green"))

    start_time = time.time()
    try:
        with make_level_progress() as progress:
            task = progress.add_task("level", total=100, db_text="-- dBFS")
            while duration is None or time.time() - start_time < duration:
                if controller.state is RecordingState.FAILED:
                    break
                samples = subscription.poll()
                if samples:
                    level = max(sample.value for sample in samples)
                    progress.update(
                        task, completed=level * 100, db_text=f"{amplitude_to_db(level):.1f} dBFS"
                    )
                time.sleep(0.1)
    except KeyboardInterrupt:
        console.print("[warning]⏹ Recording interrupted by user[/warning]")

    if controller.state is RecordingState.FAILED:
        _report_failure(controller)

    try:
        capture = controller.stop()
    except StudioError as e:
        if controller.state is RecordingState.FAILED:
            _report_failure(controller)
        console.print(f"[error]✗ Recording failed: {e}[/error]")
        sys.exit(1)
    info = store.info(capture)
    console.print(f"[success]✓ Recorded {info.duration:.2f}s → artifact {capture.key}[/success]")
    if subscription.dropped or reducer.dropped_frames:
        console.print(
            f"[dim]Visualization skipped {reducer.dropped_frames} frame(s), "
            f"{subscription.dropped} tick(s); capture is complete[/dim]"
        )

    if export is not None:
        path = export_artifact(store, capture, export)
        journal.write_export(capture.key, str(path), info.duration)
        console.print(f"[success]✓ Exported to {path}[/success]")


@app.command()
def artifacts(
    storage: str = typer.Option(default_storage_dir, help="Artifact storage directory"),
):
    """List stored artifacts."""
    store = _open_store(storage)
    infos = store.list_artifacts()
    if not infos:
        console.print(f"[warning]No artifacts in {store.storage_dir}[/warning]")
        return
    console.print(Panel(make_artifact_table(infos), title=f"[bold]Artifacts in {store.storage_dir}[/bold]"))


@app.command()
def edit(
    artifact: str = typer.Argument(..., help="Key of the raw capture to edit"),
    edits: Path = typer.Option(
        ..., "--edits", "-e", exists=True, dir_okay=False,
        help="YAML file with a list of edits, e.g. '- trim: {start: 0.5, end: 2.5}'",
    ),
    storage: str = typer.Option(default_storage_dir, help="Artifact storage directory"),
    undo: int = typer.Option(0, help="Undo this many edits after applying the list"),
    export: Optional[Path] = typer.Option(
        None, help="Export the rendered result to this audio file (flac, wav, ogg)"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show pipeline debug output"),
):
    """Replay an edit list over a stored capture and render the result."""
    _configure_logging(verbose)

    store = _open_store(storage)
    journal = SessionJournal(app_config.get_log_path(Path(storage)))
    try:
        raw = store.get_handle(artifact)
        entries = yaml.safe_load(edits.read_text(encoding="utf-8")) or []
        if not isinstance(entries, list):
            raise ValueError(f"{edits} must contain a list of edits")
        commands = commands_from_list(entries)
    except (StudioError, ValueError) as e:
        console.print(f"[error]✗ {e}[/error]")
        sys.exit(1)

    pipeline = TransformPipeline(store, app_config.pipeline_settings())
    with Project(store, raw, pipeline, journal) as project:
        try:
            for command in commands:
                if not project.apply(command):
                    console.print(f"[dim]Skipped repeated {command.describe()}[/dim]")
            for _ in range(undo):
                project.undo()
            current = project.current_artifact()
        except StudioError as e:
            console.print(f"[error]✗ Edit rejected: {e}[/error]")
            sys.exit(1)

        console.print(Panel(make_history_table(project.history.entries()), title="[bold]Active Edits[/bold]"))

    info = store.info(current)
    console.print(f"[success]✓ Rendered {info.duration:.2f}s → artifact {current.key}[/success]")

    if export is not None:
        path = export_artifact(store, current, export)
        journal.write_export(current.key, str(path), info.duration)
        console.print(f"[success]✓ Exported to {path}[/success]")
