"""Configuration management for SleepTalk Recorder.

This module provides configuration constants, the :class:`GateSettings` value
object used by the noise-gate automaton, and the :class:`AppConfig` class which
merges defaults with values from an optional YAML file
(``.sleeptalk-recorder.yml`` in the working directory).

Audio constants
---------------
- ``RATE``            – sample rate of full-fidelity recordings in Hz
- ``METERING_RATE``   – sample rate of the low-fidelity idle metering stream
- ``CHUNK``           – PyAudio buffer size in frames
- ``CHANNEL``         – number of input channels (default 1 / mono)
- ``STALL_TIMEOUT``   – seconds without audio before an open stream counts as dead
- ``FILE_EXTENSION``  – container written by soundfile (default ``'flac'``)
- ``RECORDINGS_DIR``  – default output directory (``'recordings/'``)

Noise gate constants
--------------------
- ``NOISE_THRESHOLD``       – dBFS level separating noise from silence
- ``SILENCE_GRACE_PERIOD``  – seconds of silence before a recording stops
- ``MIN_RECORDING_WARMUP``  – seconds after start during which silence is ignored
- ``POLL_INTERVAL``         – level sampling cadence in seconds

Timestamp / filename formatting
-------------------------------
Recording names are built from ``TIMESTAMP_FORMAT``; the ``{ts}`` placeholder is
shaped by ``DATETIME_FORMAT`` and ``{device_id}`` is the numeric input device
(``'default'`` when unset)::

    'sleeptalk_{ts}'               # sleeptalk_20251018_031502.flac  (default)
    'sleeptalk_{ts}_dev{device_id}' # sleeptalk_20251018_031502_dev3.flac

Configuration file
------------------
.. code-block:: yaml

    recording:
      rate: 44100
      file_extension: wav
      output_dir: nights/
    gate:
      noise_threshold: -45.0
      silence_grace_period: 5.0
      min_recording_warmup: 4.0
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

# Audio recording parameters
RATE = 44100
METERING_RATE = 16000
CHUNK = 1024
CHANNEL = 1
# Seconds without an audio callback before a stream counts as dead
STALL_TIMEOUT = 1.0
FILE_EXTENSION = 'flac'  # anything soundfile can write: 'flac', 'wav', 'ogg'
RECORDINGS_DIR = 'recordings/'

# Noise gate parameters
MIN_DBFS = -160.0
MAX_DBFS = 0.0
NOISE_THRESHOLD = -50.0
SILENCE_GRACE_PERIOD = 3.0
MIN_RECORDING_WARMUP = 4.0
POLL_INTERVAL = 0.1

# Timestamp / filename formatting
DATETIME_FORMAT = '%Y%m%d_%H%M%S'
TIMESTAMP_FORMAT = 'sleeptalk_{ts}'
CONFIG_FILE = '.sleeptalk-recorder.yml'

# Local event log
LOG_FILE = 'recordings.jsonl'

_SECTIONS = ('recording', 'gate')


@dataclass(frozen=True)
class GateSettings:
    """Thresholds and timings that drive the noise-gate automaton.

    Raises:
        ValueError: If any value violates its invariant.
    """

    noise_threshold: float = NOISE_THRESHOLD
    silence_grace_period: float = SILENCE_GRACE_PERIOD
    min_recording_warmup: float = MIN_RECORDING_WARMUP
    poll_interval: float = POLL_INTERVAL

    def __post_init__(self) -> None:
        if not MIN_DBFS <= self.noise_threshold <= MAX_DBFS:
            raise ValueError(
                f"noise_threshold must be within [{MIN_DBFS}, {MAX_DBFS}] dBFS, "
                f"got {self.noise_threshold}"
            )
        if self.silence_grace_period <= 0:
            raise ValueError(
                f"silence_grace_period must be > 0, got {self.silence_grace_period}"
            )
        if self.min_recording_warmup < 0:
            raise ValueError(
                f"min_recording_warmup must be >= 0, got {self.min_recording_warmup}"
            )
        if self.poll_interval <= 0:
            raise ValueError(f"poll_interval must be > 0, got {self.poll_interval}")


class AppConfig:
    """Application configuration management."""

    def __init__(self) -> None:
        """Initialize configuration with defaults."""
        self._config: Dict[str, Any] = {
            'rate': RATE,
            'metering_rate': METERING_RATE,
            'chunk': CHUNK,
            'channel': CHANNEL,
            'file_extension': FILE_EXTENSION,
            'output_dir': RECORDINGS_DIR,
            'timestamp_format': TIMESTAMP_FORMAT,
            'datetime_format': DATETIME_FORMAT,
            'noise_threshold': NOISE_THRESHOLD,
            'silence_grace_period': SILENCE_GRACE_PERIOD,
            'min_recording_warmup': MIN_RECORDING_WARMUP,
            'poll_interval': POLL_INTERVAL,
        }
        self._load_yaml_config()

    def _load_yaml_config(self) -> None:
        """Load optional YAML configuration from project root."""
        config_path = Path.cwd() / CONFIG_FILE
        if not config_path.exists():
            return

        content = yaml.safe_load(config_path.read_text(encoding='utf-8'))
        if not content:
            return

        if not isinstance(content, dict):
            raise ValueError(f"Configuration in {CONFIG_FILE} must be a mapping")

        for section in _SECTIONS:
            section_config = content.get(section)
            if isinstance(section_config, dict):
                for key in self._config.keys():
                    if key in section_config:
                        self._config[key] = section_config[key]

        for key, value in content.items():
            if key in _SECTIONS:
                continue
            self._config[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value.

        Args:
            key: Configuration key
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        return self._config.get(key, default)

    def get_output_dir(self) -> Path:
        """Get output directory as Path object, creating it if needed."""
        path = Path(self._config.get('output_dir', RECORDINGS_DIR))
        path.mkdir(parents=True, exist_ok=True)
        return path

    def get_gate_settings(self) -> GateSettings:
        """Build validated noise-gate settings from the merged configuration.

        Raises:
            ValueError: If a configured value violates its invariant.
        """
        return GateSettings(
            noise_threshold=float(self._config['noise_threshold']),
            silence_grace_period=float(self._config['silence_grace_period']),
            min_recording_warmup=float(self._config['min_recording_warmup']),
            poll_interval=float(self._config['poll_interval']),
        )

    def get_s3_config(self) -> Optional[Dict[str, Any]]:
        """Get S3 configuration mapping, if present."""
        s3_config = self._config.get('s3')
        if isinstance(s3_config, dict):
            return s3_config
        return None

    def get_log_path(self, output_dir: Optional[Path] = None) -> Path:
        """Return the event log file path.

        The file name comes from the ``log.file`` key in
        ``.sleeptalk-recorder.yml`` when present, otherwise :data:`LOG_FILE`.

        Args:
            output_dir: Directory that will contain the log file.  When
                ``None`` the configured ``output_dir`` is used.
        """
        log_config = self._config.get('log')
        log_file = LOG_FILE
        if isinstance(log_config, dict):
            log_file = log_config.get('file', LOG_FILE)
        base = Path(output_dir) if output_dir is not None else self.get_output_dir()
        return base / log_file
