"""Command-line interface for SleepTalk Recorder."""

from .commands import app

__all__ = ["app"]
