"""Utility tests for SleepTalk Recorder."""

import datetime

from rich.console import Console

from sleeptalk_recorder.cli.utils import (
    METER_SPAN,
    console,
    make_device_table,
    make_gate_progress,
    make_recordings_table,
    make_settings_table,
)
from sleeptalk_recorder.core import ArtifactRef, GateSettings


def _render(renderable) -> str:
    capture_console = Console(width=200, record=True)
    with capture_console.capture() as captured:
        capture_console.print(renderable)
    return captured.get()


def test_console_available():
    """Test that console is available."""
    assert console is not None
    assert hasattr(console, 'print')


def test_meter_span_covers_dbfs_range():
    assert METER_SPAN == 160


def test_device_table_marks_default():
    table = make_device_table([
        {"id": 3, "name": "USB Microphone", "driver": "usb", "channels": 1, "rate": 44100, "is_default": True},
    ])
    text = _render(table)
    assert "USB Microphone" in text
    assert "DEFAULT" in text
    assert "44100 Hz" in text


def test_settings_table():
    text = _render(make_settings_table(GateSettings(noise_threshold=-42.5)))
    assert "-42.5 dBFS" in text
    assert "3.0s" in text
    assert "100 ms" in text


def test_recordings_table_with_unreadable_file(tmp_path):
    path = tmp_path / "sleeptalk_1.flac"
    path.write_bytes(b"not audio")
    artifact = ArtifactRef(path=path, created_at=datetime.datetime(2025, 10, 19, 2, 11, 44))

    text = _render(make_recordings_table([artifact]))
    assert "sleeptalk_1.flac" in text
    assert "2025-10-19 02:11:44" in text
    assert "?" in text


def test_gate_progress_fields():
    progress = make_gate_progress()
    task = progress.add_task("gate", total=METER_SPAN, db_text="-- dBFS", state="", status="")
    progress.update(task, completed=-50.0 + METER_SPAN, db_text="-50.0 dBFS", state="WAITING", status="Waiting for noise...")
    assert progress.tasks[0].completed == 110.0
    assert progress.tasks[0].fields["status"] == "Waiting for noise..."
