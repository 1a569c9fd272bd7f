"""Local JSONL event log for SleepTalk Recorder.

Appends structured JSON Lines entries to a log file alongside the recordings,
so a night of unattended monitoring can be reviewed afterwards.

Record types
------------
``monitoring`` (event=``"start"`` / ``"stop"``)
    Written when monitoring starts, with the gate settings and device, and
    when it stops, with the number of recordings kept.

``recording`` (event=``"finalized"``)
    Written once per kept recording with its path, start time, duration and
    S3 upload result.

``recording`` (event=``"discarded"``)
    Written when a partial recording was deleted after a device or encoding
    failure.

Example log lines::

    {"type":"monitoring","event":"start","monitor_id":"20251018_231502","device_id":null,"noise_threshold":-50.0,"silence_grace_period":3.0,"min_recording_warmup":4.0,"at":"2025-10-18T23:15:02"}
    {"type":"recording","event":"finalized","monitor_id":"20251018_231502","name":"sleeptalk_20251019_021144.flac","file_path":"recordings/sleeptalk_20251019_021144.flac","started_at":"2025-10-19T02:11:44","duration_sec":9.3,"s3_object_key":null,"s3_uploaded":false}
    {"type":"monitoring","event":"stop","monitor_id":"20251018_231502","recordings":1,"at":"2025-10-19T07:00:10"}
"""

import json
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional


class RecordingLogger:
    """Appends JSONL log entries for monitoring runs and recordings.

    Thread-safe: a single :class:`threading.Lock` serialises file writes.

    Args:
        log_path: Path to the ``.jsonl`` log file.  Parent directories are
            created automatically.
    """

    def __init__(self, log_path: Path) -> None:
        log_path = Path(log_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        self._log_path = log_path
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._log_path

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def write_monitoring_start(
        self,
        monitor_id: str,
        device_id: Optional[int],
        noise_threshold: float,
        silence_grace_period: float,
        min_recording_warmup: float,
        at: Optional[datetime] = None,
    ) -> None:
        """Append a monitoring-start record.

        Args:
            monitor_id: Identifier of this monitoring run.
            device_id: Numeric input device ID (``None`` = system default).
            noise_threshold: Gate threshold in dBFS.
            silence_grace_period: Seconds of silence before a recording stops.
            min_recording_warmup: Seconds after start during which silence is ignored.
            at: Event time.  Defaults to ``datetime.now()``.
        """
        self._append({
            "type": "monitoring",
            "event": "start",
            "monitor_id": monitor_id,
            "device_id": device_id,
            "noise_threshold": noise_threshold,
            "silence_grace_period": silence_grace_period,
            "min_recording_warmup": min_recording_warmup,
            "at": _iso(at),
        })

    def write_monitoring_stop(self, monitor_id: str, recordings: int, at: Optional[datetime] = None) -> None:
        """Append a monitoring-stop record with the number of recordings kept."""
        self._append({
            "type": "monitoring",
            "event": "stop",
            "monitor_id": monitor_id,
            "recordings": recordings,
            "at": _iso(at),
        })

    def write_recording_finalized(
        self,
        monitor_id: str,
        name: str,
        file_path: str,
        started_at: Optional[datetime],
        duration_sec: float,
        s3_object_key: Optional[str] = None,
        s3_uploaded: bool = False,
    ) -> None:
        """Append a record for a kept recording.

        Args:
            monitor_id: Parent monitoring run.
            name: Recording file name.
            file_path: Local path to the saved audio file.
            started_at: When the recording started.
            duration_sec: Recording duration in seconds.
            s3_object_key: S3 object key if the file was uploaded, else ``None``.
            s3_uploaded: ``True`` if the S3 upload completed successfully.
        """
        self._append({
            "type": "recording",
            "event": "finalized",
            "monitor_id": monitor_id,
            "name": name,
            "file_path": file_path,
            "started_at": _iso(started_at),
            "duration_sec": round(duration_sec, 3),
            "s3_object_key": s3_object_key,
            "s3_uploaded": s3_uploaded,
        })

    def write_recording_discarded(self, monitor_id: str, name: str, reason: str) -> None:
        """Append a record for a recording deleted after a failure."""
        self._append({
            "type": "recording",
            "event": "discarded",
            "monitor_id": monitor_id,
            "name": name,
            "reason": reason,
        })

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _append(self, record: dict) -> None:
        """Serialise *record* as JSON and append it to the log file."""
        line = json.dumps(record, ensure_ascii=False) + "\n"
        with self._lock:
            with self._log_path.open("a", encoding="utf-8") as fh:
                fh.write(line)


def _iso(dt: Optional[datetime]) -> str:
    """Return a compact ISO 8601 string for *dt*, defaulting to now."""
    if dt is None:
        dt = datetime.now()
    return dt.replace(microsecond=0).isoformat()
