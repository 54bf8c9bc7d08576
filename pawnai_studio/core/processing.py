"""Audio processing utilities for PawnAI Studio.

This module holds the numeric building blocks shared by capture and editing:

- amplitude reduction of raw int16 PCM (peak / RMS, normalised to 0..1),
- the codec seam used by the transform pipeline (:func:`decode`,
  :func:`encode`, :func:`resample`, :func:`mix_buffers`),
- input gain and driver detection used by the microphone source.

The codec works on float32 arrays shaped ``(samples, channels)`` in the
-1.0..1.0 range.  ``encode(decode(pcm)) == pcm`` holds for any 16-bit input.
"""

import math
from typing import Optional

import numpy as np
from loguru import logger
from scipy import signal

from .frames import AudioFormat

INT16_SCALE = 32768.0
INT16_MIN = -32768
INT16_MAX = 32767


def pcm_to_mono(audio_data: bytes, channels: int = 1) -> np.ndarray:
    """Return interleaved int16 PCM as a mono float array in int16 units.

    Multi-channel input is folded by taking, per sample, the channel with the
    largest magnitude so that a loud channel is never averaged away.
    """
    audio_array = np.frombuffer(audio_data, dtype=np.int16).astype(np.float64)
    if channels > 1:
        audio_array = audio_array.reshape(-1, channels)
        picked = np.abs(audio_array).argmax(axis=1)
        audio_array = audio_array[np.arange(audio_array.shape[0]), picked]
    return audio_array


def peak_amplitude(samples: np.ndarray) -> float:
    """Peak magnitude of int16-unit samples, normalised to 0..1."""
    if samples.size == 0:
        return 0.0
    return float(min(1.0, np.max(np.abs(samples)) / INT16_SCALE))


def rms_amplitude(samples: np.ndarray) -> float:
    """RMS magnitude of int16-unit samples, normalised to 0..1."""
    if samples.size == 0:
        return 0.0
    rms = np.sqrt(np.mean(samples ** 2))
    return float(min(1.0, rms / INT16_SCALE))


def amplitude_to_db(amplitude: float, floor_db: float = -90.0) -> float:
    """Convert a 0..1 amplitude to dBFS, clamped at *floor_db*.

    Args:
        amplitude: Normalised amplitude
        floor_db: Value returned for silence

    Returns:
        Level in dBFS (0 for full scale)
    """
    if amplitude <= 0:
        return floor_db
    return max(floor_db, 20 * math.log10(amplitude))


def decode(data: bytes, audio_format: AudioFormat) -> np.ndarray:
    """Decode interleaved int16 PCM into a float32 ``(samples, channels)`` array."""
    audio_array = np.frombuffer(data, dtype=np.int16).astype(np.float32) / INT16_SCALE
    return audio_array.reshape(-1, audio_format.channels)


def encode(audio: np.ndarray) -> bytes:
    """Encode a float ``(samples, channels)`` array back into interleaved int16 PCM."""
    scaled = np.rint(np.asarray(audio, dtype=np.float64) * INT16_SCALE)
    return np.clip(scaled, INT16_MIN, INT16_MAX).astype(np.int16).tobytes()


def resample(audio: np.ndarray, up: int, down: int) -> np.ndarray:
    """Polyphase resample along the time axis by ``up / down``.

    Output length is ``ceil(len(audio) * up / down)``.
    """
    if up == down or audio.shape[0] == 0:
        return audio.astype(np.float32, copy=True)
    divisor = math.gcd(up, down)
    up, down = up // divisor, down // divisor
    resampled = signal.resample_poly(audio, up, down, axis=0)
    return np.clip(resampled, -1.0, 1.0).astype(np.float32)


def conform_channels(audio: np.ndarray, channels: int) -> np.ndarray:
    """Convert *audio* to *channels* channels (down-mix by mean, up-mix by copy)."""
    if audio.shape[1] == channels:
        return audio
    mono = audio.mean(axis=1, keepdims=True)
    return np.repeat(mono, channels, axis=1).astype(np.float32)


def mix_buffers(primary: np.ndarray, secondary: np.ndarray, gain: float) -> np.ndarray:
    """Add *secondary* to *primary* at *gain*, keeping the primary's length.

    The secondary buffer is zero-padded or truncated to match.  Both buffers
    must already share a channel layout.

    Args:
        primary: Base audio ``(samples, channels)``
        secondary: Audio to lay underneath
        gain: Linear gain applied to the secondary buffer

    Returns:
        Mixed audio, clipped to -1.0..1.0
    """
    length = primary.shape[0]
    aligned = np.zeros_like(primary)
    overlap = min(length, secondary.shape[0])
    aligned[:overlap] = secondary[:overlap]
    mixed = primary.astype(np.float64) + gain * aligned.astype(np.float64)
    return np.clip(mixed, -1.0, 1.0).astype(np.float32)


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
        audio_array = np.frombuffer(audio_data, dtype=np.int16).astype(np.float32)
        audio_array = np.clip(audio_array * gain_factor, -INT16_MAX, INT16_MAX)
        return audio_array.astype(np.int16).tobytes()
    except ValueError as e:
        logger.debug(f"Error applying gain: {e}")
        return audio_data


def detect_driver_type(device_name: Optional[str]) -> str:
    """Detect the audio driver type from device name.

    Args:
        device_name: The name of the audio device

    Returns:
        Driver type: 'pulse', 'alsa', 'jack', 'usb' or 'default'
    """
    name_lower = (device_name or '').lower()

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
