"""Core business logic for SleepTalk Recorder."""

from .archive import RecordingArchiver
from .automaton import MonitoringState, NoiseGateAutomaton, RecordingSession
from .capture import ArtifactRef, CaptureSession, MicrophoneCapture, RecordingEngine
from .catalog import RecordingCatalog
from .config import AppConfig, GateSettings
from .errors import DeviceUnavailable, EncodingFailure, PermissionDenied, RecorderError
from .level import LevelMeter, LevelSource
from .log import RecordingLogger
from .permissions import DevicePermissionGate, PermissionGate, StaticPermissionGate
from .processing import apply_gain, calculate_dbfs, detect_driver_type
from .s3_upload import S3Uploader, build_object_key
from .scheduler import ManualScheduler, Scheduler, SilenceTimer, ThreadScheduler

__all__ = [
    "AppConfig",
    "ArtifactRef",
    "CaptureSession",
    "DeviceUnavailable",
    "DevicePermissionGate",
    "EncodingFailure",
    "GateSettings",
    "LevelMeter",
    "LevelSource",
    "ManualScheduler",
    "MicrophoneCapture",
    "MonitoringState",
    "NoiseGateAutomaton",
    "PermissionDenied",
    "PermissionGate",
    "RecorderError",
    "RecordingArchiver",
    "RecordingCatalog",
    "RecordingEngine",
    "RecordingLogger",
    "RecordingSession",
    "S3Uploader",
    "Scheduler",
    "SilenceTimer",
    "StaticPermissionGate",
    "ThreadScheduler",
    "apply_gain",
    "build_object_key",
    "calculate_dbfs",
    "detect_driver_type",
]
