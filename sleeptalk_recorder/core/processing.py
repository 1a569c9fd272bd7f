"""Audio processing utilities for SleepTalk Recorder.

This module provides level calculation in dBFS, gain adjustment and driver
detection.
"""

import numpy as np
from loguru import logger

from .config import MAX_DBFS, MIN_DBFS


def calculate_dbfs(audio_data: bytes) -> float:
    """Calculate the RMS power of int16 PCM audio in dBFS.

    Args:
        audio_data: Raw audio bytes (int16)

    Returns:
        Level in dBFS clamped to ``[-160.0, 0.0]``; silence and empty buffers
        read as ``-160.0``.
    """
    try:
        audio_array = np.frombuffer(audio_data, dtype=np.int16)
        if audio_array.size == 0:
            return MIN_DBFS

        rms = np.sqrt(np.mean(audio_array.astype(np.float64) ** 2))
        if rms <= 0:
            return MIN_DBFS

        # Full scale is the int16 magnitude
        db = 20 * np.log10(rms / 32768.0)
        return float(max(MIN_DBFS, min(MAX_DBFS, db)))
    except ValueError as e:
        logger.debug(f"Error calculating dBFS level: {e}")
        return MIN_DBFS


def apply_gain(audio_data: bytes, gain_factor: float = 1.0) -> bytes:
    """Apply gain/amplification to audio data.

    Args:
        audio_data: Raw audio bytes (int16)
        gain_factor: Gain multiplier (1.0 = no change, 2.0 = +6dB, 0.5 = -6dB)

    Returns:
        Amplified audio data as bytes
    """
    if gain_factor == 1.0:
        return audio_data

    try:
        audio_array = np.frombuffer(audio_data, dtype=np.int16)
        scaled = audio_array.astype(np.float32) * gain_factor
        # Clip before the cast so loud samples saturate instead of wrapping
        scaled = np.clip(scaled, -32767, 32767)
        return scaled.astype(np.int16).tobytes()
    except ValueError as e:
        logger.debug(f"Error applying gain: {e}")
        return audio_data


def detect_driver_type(device_name: str) -> str:
    """Detect the audio driver type from device name.

    Args:
        device_name: The name of the audio device

    Returns:
        Driver type: 'pulse', 'alsa', 'jack', 'usb' or 'default'
    """
    name_lower = device_name.lower()

    if 'pulse' in name_lower or 'pipewire' in name_lower:
        return 'pulse'
    elif 'alsa' in name_lower or 'hw:' in name_lower or 'plughw' in name_lower:
        return 'alsa'
    elif 'jack' in name_lower:
        return 'jack'
    elif 'usb' in name_lower:
        return 'usb'
    else:
        return 'default'
