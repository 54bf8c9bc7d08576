"""Audio frame model and the frame source contract.

An :class:`AudioFrame` is an immutable chunk of interleaved signed 16-bit PCM
tagged with a sequence number.  Frame sources push frames into a
:class:`FrameSink` (the recording controller) from their own thread.
"""

from dataclasses import dataclass
from typing import Any, Dict, Protocol

SAMPLE_WIDTH_INT16 = 2


@dataclass(frozen=True)
class AudioFormat:
    """Sample rate and channel layout of 16-bit PCM audio."""

    sample_rate: int
    channels: int = 1
    sample_width: int = SAMPLE_WIDTH_INT16

    def __post_init__(self) -> None:
        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {self.sample_rate}")
        if self.channels <= 0:
            raise ValueError(f"channels must be positive, got {self.channels}")
        if self.sample_width != SAMPLE_WIDTH_INT16:
            raise ValueError(f"Only 16-bit PCM is supported, got width {self.sample_width}")

    @property
    def bytes_per_frame(self) -> int:
        """Bytes used by one sample across all channels."""
        return self.sample_width * self.channels

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sample_rate": self.sample_rate,
            "channels": self.channels,
            "sample_width": self.sample_width,
        }


@dataclass(frozen=True)
class AudioFrame:
    """A sequenced chunk of interleaved PCM produced by a frame source."""

    sequence: int
    data: bytes
    sample_rate: int
    channels: int = 1

    def __post_init__(self) -> None:
        if not isinstance(self.data, bytes):
            raise ValueError("AudioFrame.data must be bytes")
        if self.sequence < 0:
            raise ValueError(f"sequence must be non-negative, got {self.sequence}")
        frame_align = SAMPLE_WIDTH_INT16 * self.channels
        if len(self.data) % frame_align != 0:
            raise ValueError(
                f"data length ({len(self.data)}) must be divisible by "
                f"sample_width * channels ({frame_align})"
            )

    @property
    def format(self) -> AudioFormat:
        return AudioFormat(self.sample_rate, self.channels)

    @property
    def sample_count(self) -> int:
        """Samples per channel in this frame."""
        return len(self.data) // (SAMPLE_WIDTH_INT16 * self.channels)

    @property
    def duration(self) -> float:
        """Frame duration in seconds."""
        return self.sample_count / self.sample_rate


class FrameSink(Protocol):
    """Receiver side of a frame source."""

    def deliver(self, frame: AudioFrame) -> bool:
        """Hand over one frame.  Returns ``False`` when it was not accepted."""

    def fail(self, error: Exception) -> None:
        """Report a terminal source error."""


class FrameSource(Protocol):
    """Producer of sequenced audio frames (microphone, file, generator)."""

    sample_rate: int
    channels: int

    def open(self, sink: FrameSink) -> None:
        """Start pushing frames into *sink*.

        Raises:
            DeviceUnavailable: The device cannot be opened.
            PermissionDenied: Access to the device was refused.
        """

    def close(self) -> None:
        """Stop producing frames and release the device."""
