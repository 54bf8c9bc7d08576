"""Voice tone profiles and noise reduction.

Tone profiles are Butterworth filters blended with the dry signal.  Noise
reduction is a short-time spectral gate: a per-frequency noise floor is
estimated from a low percentile of the magnitude over time, and bins that do
not rise clearly above it are attenuated.

All functions take and return float32 arrays shaped ``(samples, channels)``
and are deterministic for a given input.
"""

from dataclasses import dataclass
from typing import Dict, Tuple, Union

import numpy as np
from loguru import logger
from scipy import signal

NOISE_WINDOW = 512
NOISE_MIN_SAMPLES = 64
NOISE_FLOOR_PERCENTILE = 20
NOISE_GATE_RATIO = 2.0
NOISE_ATTENUATION = 0.1


@dataclass(frozen=True)
class ToneProfile:
    """A named filter voicing.

    ``dry`` and ``wet`` are the linear levels of the unprocessed and filtered
    signal in the output.
    """

    name: str
    btype: str
    cutoff: Union[float, Tuple[float, float]]
    order: int = 4
    dry: float = 0.0
    wet: float = 1.0

    def design(self, sample_rate: int) -> np.ndarray:
        """Return second-order sections for *sample_rate*."""
        nyquist = sample_rate / 2
        if isinstance(self.cutoff, tuple):
            normalized = [min(freq / nyquist, 0.99) for freq in self.cutoff]
        else:
            normalized = min(self.cutoff / nyquist, 0.99)
            if self.cutoff / nyquist >= 1.0:
                logger.warning(
                    f"Tone '{self.name}': cutoff {self.cutoff}Hz >= Nyquist {nyquist}Hz, clamping"
                )
        return signal.butter(self.order, normalized, btype=self.btype, output="sos")


TONE_PROFILES: Dict[str, ToneProfile] = {
    profile.name: profile
    for profile in (
        ToneProfile("warm", "lowpass", 2500.0, dry=0.4, wet=0.6),
        ToneProfile("bright", "highpass", 2000.0, dry=1.0, wet=0.5),
        ToneProfile("radio", "bandpass", (300.0, 3400.0), order=2),
        ToneProfile("deep", "lowpass", 800.0, dry=0.5, wet=0.8),
    )
}


def apply_tone(audio: np.ndarray, sample_rate: int, profile: ToneProfile) -> np.ndarray:
    """Filter *audio* through *profile* and blend with the dry signal."""
    if audio.shape[0] == 0:
        return audio.copy()
    sos = profile.design(sample_rate)
    filtered = signal.sosfilt(sos, audio.astype(np.float64), axis=0)
    blended = profile.dry * audio.astype(np.float64) + profile.wet * filtered
    return np.clip(blended, -1.0, 1.0).astype(np.float32)


def reduce_noise(audio: np.ndarray, sample_rate: int) -> np.ndarray:
    """Attenuate stationary background noise with a spectral gate."""
    length = audio.shape[0]
    if length < NOISE_MIN_SAMPLES:
        return audio.copy()

    nperseg = min(NOISE_WINDOW, length)
    cleaned = np.empty_like(audio, dtype=np.float32)
    for channel in range(audio.shape[1]):
        _, _, spectrum = signal.stft(
            audio[:, channel].astype(np.float64), fs=sample_rate, nperseg=nperseg
        )
        magnitude = np.abs(spectrum)
        floor = np.percentile(magnitude, NOISE_FLOOR_PERCENTILE, axis=1, keepdims=True)
        gated = np.where(magnitude > floor * NOISE_GATE_RATIO, spectrum, spectrum * NOISE_ATTENUATION)
        _, restored = signal.istft(gated, fs=sample_rate, nperseg=nperseg)

        if restored.shape[0] < length:
            restored = np.pad(restored, (0, length - restored.shape[0]))
        cleaned[:, channel] = restored[:length]

    return np.clip(cleaned, -1.0, 1.0).astype(np.float32)
