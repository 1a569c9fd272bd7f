"""SleepTalk Recorder - noise-gated audio recording for unattended nights.

This package listens to a microphone, starts a recording when the room gets
louder than a noise threshold and stops it once silence has lasted long
enough, so only the moments with audible activity are kept.
"""

from .cli.commands import app

__version__ = "1.0.0"
__author__ = "SleepTalk Recorder Team"

__all__ = ["app", "__version__"]
