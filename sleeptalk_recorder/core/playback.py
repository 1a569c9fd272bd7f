"""Playback of finished recordings through the default output device."""

from typing import Any, Callable

import numpy as np
import pyaudio
import soundfile as sf
from loguru import logger

from .capture import ArtifactRef
from .errors import DeviceUnavailable

PLAYBACK_BLOCK = 4096


def play_recording(
    artifact: ArtifactRef,
    audio_factory: Callable[[], Any] = pyaudio.PyAudio,
    block_size: int = PLAYBACK_BLOCK,
) -> float:
    """Play *artifact* to completion.

    Args:
        artifact: Recording to play
        audio_factory: Callable returning a PyAudio-compatible object
        block_size: Frames written to the output stream per call

    Returns:
        Duration played in seconds

    Raises:
        DeviceUnavailable: If no output stream can be opened
    """
    with sf.SoundFile(str(artifact.path)) as sound_file:
        rate = sound_file.samplerate
        channels = sound_file.channels
        audio = audio_factory()
        try:
            try:
                stream = audio.open(format=pyaudio.paInt16, channels=channels, rate=rate, output=True)
            except (OSError, ValueError) as error:
                raise DeviceUnavailable(f'Cannot open output device: {error}') from error

            frames = 0
            try:
                for block in sound_file.blocks(blocksize=block_size, dtype='int16', always_2d=True):
                    stream.write(np.ascontiguousarray(block).tobytes())
                    frames += len(block)
            finally:
                stream.stop_stream()
                stream.close()
        finally:
            audio.terminate()

    duration = frames / rate if rate else 0.0
    logger.info(f'Played {artifact.name} ({duration:.1f}s)')
    return duration
