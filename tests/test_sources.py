"""Frame source tests."""

import sys
import types

import numpy as np
import pytest

from pawnai_studio.core.errors import DeviceUnavailable, FrameSequenceViolation, PermissionDenied
from pawnai_studio.core.recording import RecordingController, RecordingState
from pawnai_studio.core.sources import MicrophoneFrameSource, SyntheticFrameSource, list_input_devices


class CollectingSink:
    def __init__(self, error=None):
        self.frames = []
        self.error = error

    def deliver(self, frame):
        if self.error is not None:
            raise self.error
        self.frames.append(frame)
        return True

    def fail(self, error):
        self.error = error


DEVICES = [
    {"name": "HDA Intel PCH: ALC3246 Analog (hw:0,0)", "maxInputChannels": 2, "defaultSampleRate": 44100.0},
    {"name": "pulse", "maxInputChannels": 32, "defaultSampleRate": 44100.0},
    {"name": "HDMI Output", "maxInputChannels": 0, "defaultSampleRate": 48000.0},
    {"name": "USB Audio Device", "maxInputChannels": 1, "defaultSampleRate": 48000.0},
]


class FakeStream:
    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.stopped = False
        self.closed = False

    def stop_stream(self):
        self.stopped = True

    def close(self):
        self.closed = True


class FakePyAudio:
    open_error = None
    streams = []

    def get_default_input_device_info(self):
        return dict(DEVICES[1], index=1)

    def get_device_count(self):
        return len(DEVICES)

    def get_device_info_by_index(self, index):
        return DEVICES[index]

    def open(self, **kwargs):
        if FakePyAudio.open_error is not None:
            raise FakePyAudio.open_error
        stream = FakeStream(**kwargs)
        FakePyAudio.streams.append(stream)
        return stream

    def terminate(self):
        pass


@pytest.fixture
def fake_pyaudio(monkeypatch):
    module = types.ModuleType("pyaudio")
    module.PyAudio = FakePyAudio
    module.paInt16 = 8
    module.paContinue = 0
    module.paComplete = 1
    FakePyAudio.open_error = None
    FakePyAudio.streams = []
    monkeypatch.setitem(sys.modules, "pyaudio", module)
    return module


def test_list_input_devices(fake_pyaudio):
    devices = list_input_devices()
    assert [device["id"] for device in devices] == [0, 1, 3]
    assert [device["driver"] for device in devices] == ["alsa", "pulse", "usb"]
    assert [device["is_default"] for device in devices] == [False, True, False]
    assert devices[2]["rate"] == 48000


def test_list_input_devices_with_filter(fake_pyaudio):
    devices = list_input_devices(driver_filter="USB")
    assert [device["name"] for device in devices] == ["USB Audio Device"]


def test_microphone_pushes_sequenced_frames(fake_pyaudio):
    source = MicrophoneFrameSource(device_id=3, sample_rate=48000, frame_size=4, gain_factor=2.0)
    sink = CollectingSink()
    source.open(sink)

    stream = FakePyAudio.streams[0]
    assert stream.kwargs["rate"] == 48000
    assert stream.kwargs["input_device_index"] == 3
    assert source.device_name == "USB Audio Device"

    callback = stream.kwargs["stream_callback"]
    pcm = np.array([100, -100, 200, -200], dtype=np.int16).tobytes()
    assert callback(pcm, 4, None, 0) == (None, fake_pyaudio.paContinue)
    assert callback(pcm, 4, None, 0) == (None, fake_pyaudio.paContinue)

    assert [frame.sequence for frame in sink.frames] == [0, 1]
    assert np.frombuffer(sink.frames[0].data, dtype=np.int16).tolist() == [200, -200, 400, -400]

    source.close()
    assert stream.stopped and stream.closed


def test_microphone_stops_on_capture_error(fake_pyaudio):
    source = MicrophoneFrameSource(frame_size=2)
    source.open(CollectingSink(error=FrameSequenceViolation(3, 3)))
    callback = FakePyAudio.streams[0].kwargs["stream_callback"]
    assert callback(b"\x00" * 4, 2, None, 0) == (None, fake_pyaudio.paComplete)


@pytest.mark.parametrize(
    "error, expected",
    [(OSError("Invalid number of channels"), DeviceUnavailable), (PermissionError("denied"), PermissionDenied)],
)
def test_microphone_open_errors(fake_pyaudio, error, expected):
    FakePyAudio.open_error = error
    with pytest.raises(expected):
        MicrophoneFrameSource().open(CollectingSink())


def test_synthetic_source_respects_duration():
    source = SyntheticFrameSource(sample_rate=8000, frame_size=800, duration=0.35)
    sink = CollectingSink()
    source.open(sink)
    assert source.finished.wait(2.0)
    source.close()

    assert [frame.sequence for frame in sink.frames] == [0, 1, 2, 3]
    assert sum(frame.sample_count for frame in sink.frames) == 2800


def test_synthetic_tone_is_continuous():
    source = SyntheticFrameSource(sample_rate=8000, frequency=100.0)
    whole = np.frombuffer(source.frame(0, 0, 160).data, dtype=np.int16)
    second_half = np.frombuffer(source.frame(1, 80, 80).data, dtype=np.int16)
    assert np.array_equal(whole[80:], second_half)


def test_synthetic_source_records_through_controller(store):
    source = SyntheticFrameSource(duration=0.5)
    controller = RecordingController(source, store)
    controller.start()
    assert source.finished.wait(5.0)
    capture = controller.stop()

    assert controller.state is RecordingState.IDLE
    assert store.info(capture).sample_count == 22050
