"""CLI commands for SleepTalk Recorder.

This module provides all command-line interface commands using Typer.
"""

import sys
import time
from pathlib import Path
from typing import Optional

import typer
from loguru import logger
from rich.panel import Panel
from rich.prompt import IntPrompt

from sleeptalk_recorder.core import (
    DevicePermissionGate,
    GateSettings,
    MicrophoneCapture,
    MonitoringState,
    NoiseGateAutomaton,
    RecordingArchiver,
    RecordingCatalog,
    RecordingEngine,
    RecordingLogger,
    ThreadScheduler,
)
from sleeptalk_recorder.core.config import (
    AppConfig, RATE, METERING_RATE, FILE_EXTENSION, RECORDINGS_DIR,
    TIMESTAMP_FORMAT, DATETIME_FORMAT,
)
from sleeptalk_recorder.core.errors import DeviceUnavailable, PermissionDenied
from sleeptalk_recorder.core.playback import play_recording
from sleeptalk_recorder.core.s3_upload import S3Uploader
from sleeptalk_recorder.cli.utils import (
    METER_SPAN, console, suppress_stderr, make_device_table, make_gate_progress,
    make_recordings_table, make_settings_table,
)

app = typer.Typer(help="Noise-gated sleep talk recorder: records only while the room is not silent")

app_config = AppConfig()
default_output_dir = str(app_config.get("output_dir", RECORDINGS_DIR))
default_rate = int(app_config.get("rate", RATE))
default_metering_rate = int(app_config.get("metering_rate", METERING_RATE))
default_file_extension = str(app_config.get("file_extension", FILE_EXTENSION))
default_timestamp_format = str(app_config.get("timestamp_format", TIMESTAMP_FORMAT))
default_datetime_format = str(app_config.get("datetime_format", DATETIME_FORMAT))

_STATE_LABELS = {
    MonitoringState.STOPPED: "[dim]STOPPED[/dim]",
    MonitoringState.WAITING_FOR_NOISE: "[cyan]WAITING[/cyan]",
    MonitoringState.RECORDING: "[bold red]● REC[/bold red]",
}


def _configure_logging(verbose: bool) -> None:
    logger.remove()
    if verbose:
        logger.add(sys.stderr, level="DEBUG")
    else:
        logger.add(sys.stderr, level="WARNING")


def _catalog(output: Optional[str] = None) -> RecordingCatalog:
    return RecordingCatalog(output or str(app_config.get("output_dir", RECORDINGS_DIR)))


def _build_uploader(upload: bool) -> Optional[S3Uploader]:
    """Create the optional S3 uploader from YAML configuration."""
    if not upload:
        logger.info('S3 upload disabled by CLI flag')
        return None

    s3_config = app_config.get_s3_config()
    if not s3_config:
        logger.info('S3 upload disabled: no `s3` config found in .sleeptalk-recorder.yml')
        return None
    try:
        return S3Uploader.from_dict(s3_config)
    except Exception as error:
        logger.warning(f'S3 upload disabled: {error}')
        return None


def _pick_device(driver: Optional[str], verbose: bool) -> int:
    """Show the input devices and prompt for one."""
    if verbose:
        devices = RecordingEngine.list_devices(driver_filter=driver)
    else:
        with suppress_stderr():
            devices = RecordingEngine.list_devices(driver_filter=driver)
    if not devices:
        console.print(
            "[error]✗ No input devices found"
            + (f" for driver: {driver}" if driver else "")
            + "[/error]"
        )
        raise typer.Exit(code=1)

    title = "Available Input Devices"
    if driver:
        title += f" (filtered by: {driver})"
    console.print(Panel(make_device_table(devices), title=f"[bold]{title}[/bold]"))

    input_device_ids = [d['id'] for d in devices]
    default_device_id = next((d['id'] for d in devices if d.get('is_default')), input_device_ids[0])
    device_id = IntPrompt.ask("📍 Select device ID", console=console, default=default_device_id)
    if device_id not in input_device_ids:
        console.print(f"[error]✗ Invalid device ID: {device_id}[/error]")
        raise typer.Exit(code=1)
    return device_id


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
    if verbose:
        devices = RecordingEngine.list_devices(driver_filter=driver)
    else:
        with suppress_stderr():
            devices = RecordingEngine.list_devices(driver_filter=driver)

    title = "Available Input Devices"
    if driver:
        title += f" (filtered by: {driver})"
    console.print(Panel(make_device_table(devices), title=f"[bold]{title}[/bold]"))


@app.command()
def monitor(
    duration: Optional[int] = typer.Option(
        None, help="Stop monitoring after this many seconds. Leave empty to run until Ctrl+C."
    ),
    output: str = typer.Option(default_output_dir, help="Output directory for recordings"),
    threshold: float = typer.Option(
        float(app_config.get("noise_threshold")), help="Noise threshold in dBFS (-160 to 0)"
    ),
    grace: float = typer.Option(
        float(app_config.get("silence_grace_period")),
        help="Seconds of continuous silence before a recording stops",
    ),
    warmup: float = typer.Option(
        float(app_config.get("min_recording_warmup")),
        help="Seconds after a recording starts during which silence is ignored",
    ),
    rate: int = typer.Option(default_rate, help="Recording sample rate in Hz"),
    device_id: Optional[int] = typer.Option(
        None, help="Audio device ID to use. Leave empty for the system default."
    ),
    pick_device: bool = typer.Option(
        False, "--pick-device", help="Choose the input device interactively"
    ),
    driver: Optional[str] = typer.Option(
        None, help="Filter devices by driver when picking: pulse, alsa, jack, usb, default"
    ),
    gain: float = typer.Option(
        1.0, help="Input gain/amplification factor (1.0=no change, 2.0=+6dB, 0.5=-6dB)"
    ),
    format: str = typer.Option(
        default_file_extension, help="Audio format: flac (lossless), wav (uncompressed), ogg (lossy)"
    ),
    upload: bool = typer.Option(
        True,
        "--upload/--no-upload",
        help="Mirror finished recordings to S3 when configured; --no-upload keeps them local.",
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Show debug output from audio libraries"
    ),
    log_file: Optional[str] = typer.Option(
        None,
        help=(
            "Override the event log filename (relative to --output directory). "
            "Defaults to the value from .sleeptalk-recorder.yml or 'recordings.jsonl'."
        ),
    ),
):
    """Wait for noise and record each noisy period to its own file."""
    _configure_logging(verbose)

    try:
        settings = GateSettings(
            noise_threshold=threshold,
            silence_grace_period=grace,
            min_recording_warmup=warmup,
            poll_interval=float(app_config.get("poll_interval")),
        )
    except ValueError as e:
        console.print(f"[error]✗ {e}[/error]")
        raise typer.Exit(code=1)

    if pick_device and device_id is None:
        device_id = _pick_device(driver, verbose)

    output_dir = output if output.endswith('/') else output + '/'
    log_path = Path(output_dir) / log_file if log_file else app_config.get_log_path(Path(output_dir))
    archiver = RecordingArchiver(RecordingLogger(log_path), _build_uploader(upload))
    catalog = _catalog(output_dir)
    recordings_before = len(catalog)

    try:
        capture = MicrophoneCapture(
            output_dir=output_dir,
            rate=rate,
            metering_rate=default_metering_rate,
            device_id=device_id,
            gain_factor=gain,
            file_format=format,
            timestamp_format=default_timestamp_format,
            datetime_format=default_datetime_format,
        )
    except ValueError as e:
        console.print(f"[error]✗ {e}[/error]")
        raise typer.Exit(code=1)

    scheduler = ThreadScheduler()
    automaton = NoiseGateAutomaton(
        level_source=capture.meter,
        capture=capture,
        scheduler=scheduler,
        catalog=catalog,
        permission_gate=DevicePermissionGate(device_id),
        settings=settings,
        archiver=archiver,
        device_id=device_id,
    )
    scheduler.start()

    try:
        if verbose:
            scheduler.submit(automaton.start_monitoring).result()
        else:
            with suppress_stderr():
                scheduler.submit(automaton.start_monitoring).result()
    except PermissionDenied as e:
        console.print(f"[error]✗ {e}. Grant microphone access and try again.[/error]")
        scheduler.shutdown()
        capture.close()
        raise typer.Exit(code=1)
    except DeviceUnavailable as e:
        console.print(f"[error]✗ Device error: {e}[/error]")
        scheduler.shutdown()
        capture.close()
        raise typer.Exit(code=1)

    info_grid = make_settings_table(settings)
    info_grid.add_row("Device:", str(device_id) if device_id is not None else "system default")
    info_grid.add_row("Format:", format.upper())
    info_grid.add_row("Output:", output_dir)
    info_grid.add_row("Log:", str(log_path))
    info_grid.add_row("Duration:", f"{duration}s" if duration else "until Ctrl+C")
    console.print(Panel(info_grid, title="[bold]🌙 Sleep Talk Monitor[/bold]", border_style="green"))

    start_time = time.time()
    try:
        with make_gate_progress() as progress:
            task = progress.add_task("gate", total=METER_SPAN, db_text="-- dBFS", state="", status="")
            while duration is None or time.time() - start_time < duration:
                state = automaton.state
                if state is MonitoringState.STOPPED:
                    break
                level = automaton.last_level
                progress.update(
                    task,
                    completed=level + METER_SPAN,
                    db_text=f"{level:6.1f} dBFS",
                    state=_STATE_LABELS[state],
                    status=automaton.status,
                )
                time.sleep(0.1)
    except KeyboardInterrupt:
        console.print("[warning]⏹ Monitoring interrupted by user[/warning]")
    finally:
        scheduler.submit(automaton.stop_monitoring).result(timeout=60)
        scheduler.shutdown()
        capture.close()

    kept = len(catalog) - recordings_before
    if automaton.last_error:
        console.print(f"[warning]Last error: {automaton.last_error}[/warning]")
    console.print(f"[success]✓ Monitoring finished, {kept} recording(s) saved in {output_dir}[/success]")


@app.command("list")
def list_recordings(
    output: str = typer.Option(default_output_dir, help="Directory holding the recordings"),
):
    """List recordings, newest first."""
    recordings = _catalog(output).list()
    if not recordings:
        console.print("[dim]No recordings yet[/dim]")
        return
    console.print(Panel(make_recordings_table(recordings), title=f"[bold]Recordings ({len(recordings)})[/bold]"))


@app.command()
def play(
    name: str = typer.Argument(..., help="Recording name as shown by `list`"),
    output: str = typer.Option(default_output_dir, help="Directory holding the recordings"),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Show debug output from audio libraries"
    ),
):
    """Play a recording."""
    _configure_logging(verbose)
    artifact = _catalog(output).find(name)
    if artifact is None:
        console.print(f"[error]✗ No recording named {name}[/error]")
        raise typer.Exit(code=1)

    console.print(f"[info]▶ Playing {artifact.name}[/info]")
    try:
        if verbose:
            played = play_recording(artifact)
        else:
            with suppress_stderr():
                played = play_recording(artifact)
    except DeviceUnavailable as e:
        console.print(f"[error]✗ Playback error: {e}[/error]")
        raise typer.Exit(code=1)
    except KeyboardInterrupt:
        console.print("[warning]⏹ Playback stopped[/warning]")
        return
    console.print(f"[success]✓ Playback finished ({played:.1f}s)[/success]")


@app.command()
def delete(
    name: str = typer.Argument(..., help="Recording name as shown by `list`"),
    output: str = typer.Option(default_output_dir, help="Directory holding the recordings"),
):
    """Delete one recording."""
    catalog = _catalog(output)
    artifact = catalog.find(name)
    if artifact is None or not catalog.remove(artifact):
        console.print(f"[error]✗ Could not delete {name}[/error]")
        raise typer.Exit(code=1)
    console.print(f"[success]✓ Deleted {artifact.name}[/success]")


@app.command()
def clear(
    output: str = typer.Option(default_output_dir, help="Directory holding the recordings"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """Delete all recordings.  This cannot be undone."""
    catalog = _catalog(output)
    if not len(catalog):
        console.print("[dim]No recordings to delete[/dim]")
        return
    if not yes and not typer.confirm(f"Delete all {len(catalog)} recordings?"):
        console.print("[warning]Cancelled[/warning]")
        raise typer.Exit(code=1)
    deleted = catalog.remove_all()
    console.print(f"[success]✓ Deleted {deleted} recording(s)[/success]")


@app.command()
def status(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Show debug output from audio libraries"
    ),
):
    """Show gate settings, devices and optional S3 storage information.

    If an S3 configuration is present in ``.sleeptalk-recorder.yml`` the command
    will attempt a lightweight health check on the configured bucket and
    report whether it is reachable.
    """
    _configure_logging(verbose)

    console.rule("[bold]📋 SleepTalk Recorder Status[/bold]")
    console.print()
    try:
        settings = app_config.get_gate_settings()
        console.print(Panel(make_settings_table(settings), title="[bold]Noise Gate[/bold]"))
    except ValueError as e:
        console.print(f"[error]✗ Invalid gate configuration: {e}[/error]")

    try:
        if verbose:
            devices = RecordingEngine.list_devices()
        else:
            with suppress_stderr():
                devices = RecordingEngine.list_devices()
        console.print(Panel(make_device_table(devices), title="[bold]Available Input Devices[/bold]"))
    except Exception as e:
        console.print(f"[error]✗ Error listing devices: {e}[/error]")

    s3_conf = app_config.get_s3_config()
    if not s3_conf:
        console.print("[dim]S3 storage not configured[/dim]")
    else:
        try:
            uploader = S3Uploader.from_dict(s3_conf)
            if uploader.check_bucket():
                console.print(f"[info]S3 storage available: bucket {uploader.bucket}[/info]")
            else:
                console.print(f"[warning]S3 storage not reachable (bucket: {uploader.bucket})[/warning]")
        except Exception as e:  # include config errors
            console.print(f"[error]Failed to initialize S3 client: {e}[/error]")
