"""Exception types raised by the capture layer and the noise-gate automaton."""


class RecorderError(Exception):
    """Base class for SleepTalk Recorder errors."""


class DeviceUnavailable(RecorderError):
    """The capture device or its output file could not be opened.

    Raised when the input device is busy or missing, when access was revoked,
    or when the artifact cannot be created on disk.
    """


class EncodingFailure(RecorderError):
    """A device or encoder error interrupted an active recording."""


class PermissionDenied(RecorderError):
    """Audio capture is not authorized on this machine."""
