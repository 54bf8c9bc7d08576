"""Shared test fixtures for PawnAI Studio tests."""

import os
from typing import List, Optional

import numpy as np
import pytest

from pawnai_studio.core.config import CaptureSettings
from pawnai_studio.core.frames import AudioFormat, AudioFrame
from pawnai_studio.core.project import Project
from pawnai_studio.core.recording import RecordingController
from pawnai_studio.core.storage import MemoryArtifactStore

# Fixed terminal width so Rich tables in CLI output are not truncated.
os.environ["COLUMNS"] = "200"

RATE = 44100
FRAME_SIZE = 441  # 10 ms


def sine_pcm(seconds: float, sample_rate: int = RATE, frequency: float = 440.0,
             amplitude: float = 0.5, channels: int = 1) -> bytes:
    """Interleaved int16 sine tone."""
    count = int(round(seconds * sample_rate))
    t = np.arange(count) / sample_rate
    tone = np.rint(amplitude * 32767 * np.sin(2 * np.pi * frequency * t)).astype(np.int16)
    return np.repeat(tone[:, None], channels, axis=1).tobytes()


class ManualFrameSource:
    """Frame source driven by the test.

    ``open`` delivers ``initial`` frames synchronously so the controller sees
    its first frame before ``start`` returns; further frames are pushed with
    :meth:`push`.
    """

    def __init__(self, sample_rate: int = RATE, channels: int = 1, frame_size: int = FRAME_SIZE,
                 initial: int = 1, open_error: Optional[Exception] = None) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self.frame_size = frame_size
        self.initial = initial
        self.open_error = open_error
        self.sink = None
        self.sequence = 0
        self.offset = 0
        self.accepted: List[AudioFrame] = []
        self.open_count = 0
        self.close_count = 0

    def make_frame(self, sequence: Optional[int] = None, amplitude: float = 0.5) -> AudioFrame:
        t = (self.offset + np.arange(self.frame_size)) / self.sample_rate
        tone = np.rint(amplitude * 32767 * np.sin(2 * np.pi * 440.0 * t)).astype(np.int16)
        data = np.repeat(tone[:, None], self.channels, axis=1).tobytes()
        self.offset += self.frame_size
        return AudioFrame(self.sequence if sequence is None else sequence, data,
                          self.sample_rate, self.channels)

    def open(self, sink) -> None:
        self.open_count += 1
        if self.open_error is not None:
            raise self.open_error
        self.sink = sink
        for _ in range(self.initial):
            self.push()

    def push(self, amplitude: float = 0.5) -> bool:
        frame = self.make_frame(amplitude=amplitude)
        self.sequence += 1
        return self.push_frame(frame)

    def push_frame(self, frame: AudioFrame) -> bool:
        accepted = self.sink.deliver(frame)
        if accepted:
            self.accepted.append(frame)
        return accepted

    def close(self) -> None:
        self.close_count += 1


@pytest.fixture
def store():
    """In-memory artifact store."""
    return MemoryArtifactStore()


@pytest.fixture
def capture_settings():
    """Capture settings with a short first-frame timeout."""
    return CaptureSettings(rate=RATE, frame_size=FRAME_SIZE, first_frame_timeout=0.2)


@pytest.fixture
def raw_capture(store, capture_settings):
    """3 seconds of 44.1 kHz mono captured through the recording controller."""
    source = ManualFrameSource()
    controller = RecordingController(source, store, settings=capture_settings)
    controller.start()
    for _ in range(299):
        source.push()
    return controller.stop()


@pytest.fixture
def tone_artifact(store):
    """A sealed 2 second sine tone stored directly."""
    return store.put(sine_pcm(2.0), AudioFormat(RATE))


@pytest.fixture
def project(store, raw_capture):
    """Editing project over the recorded capture."""
    with Project(store, raw_capture) as project:
        yield project
