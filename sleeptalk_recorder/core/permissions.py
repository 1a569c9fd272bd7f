"""Capture permission checks consulted before monitoring starts."""

from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

import pyaudio
from loguru import logger

from .capture import RecordingEngine


class PermissionGate(ABC):
    """Answers whether audio capture is currently allowed."""

    @abstractmethod
    def is_capture_authorized(self) -> bool:
        ...


class StaticPermissionGate(PermissionGate):
    """Fixed answer, for embedding and for hosts without a permission model."""

    def __init__(self, granted: bool = True) -> None:
        self.granted = granted

    def is_capture_authorized(self) -> bool:
        return self.granted


class DevicePermissionGate(PermissionGate):
    """Treats capture as authorized when PyAudio can see a usable input device.

    On Linux access to the microphone is governed by device permissions and
    the sound server, so an input device that cannot be enumerated is the
    closest equivalent to a denied microphone permission.
    """

    def __init__(self, device_id: Optional[int] = None, audio_factory: Callable[[], Any] = pyaudio.PyAudio) -> None:
        self._device_id = device_id
        self._audio_factory = audio_factory

    def is_capture_authorized(self) -> bool:
        try:
            audio = self._audio_factory()
        except OSError as error:
            logger.warning(f'Audio system unavailable: {error}')
            return False

        try:
            device_id = self._device_id
            if device_id is None:
                device_id = RecordingEngine.default_input_device(audio)
                if device_id is None:
                    logger.warning('No default input device available')
                    return False
            try:
                info = audio.get_device_info_by_index(device_id)
            except (OSError, ValueError) as error:
                logger.warning(f'Input device {device_id} unavailable: {error}')
                return False
            return info.get('maxInputChannels', 0) > 0
        finally:
            audio.terminate()
