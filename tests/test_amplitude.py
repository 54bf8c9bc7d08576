"""Amplitude reduction and visualization queue tests."""

from queue import Empty

import numpy as np
import pytest

from pawnai_studio.core.amplitude import AmplitudeReducer, AmplitudeSample, DropOldestQueue
from pawnai_studio.core.config import VisualizationSettings
from pawnai_studio.core.frames import AudioFrame


def constant_frame(sequence, value, samples, sample_rate=44100, channels=1):
    pcm = np.full((samples, channels), value, dtype=np.int16)
    return AudioFrame(sequence, pcm.tobytes(), sample_rate, channels)


def test_window_follows_tick_length():
    reducer = AmplitudeReducer(VisualizationSettings(tick_ms=20))
    assert reducer.window(44100) == 882
    assert reducer.window(16000) == 320


def test_peak_reduction():
    reducer = AmplitudeReducer(VisualizationSettings(tick_ms=20, amplitude_mode="peak"))
    samples = reducer.reduce(constant_frame(0, 16384, 882 * 2))
    assert [sample.index for sample in samples] == [0, 1]
    assert samples[1].timestamp == pytest.approx(0.02)
    assert all(sample.value == pytest.approx(0.5) for sample in samples)


def test_rms_reduction():
    reducer = AmplitudeReducer(VisualizationSettings(tick_ms=20, amplitude_mode="rms"))
    pcm = np.tile(np.array([16384, -16384], dtype=np.int16), 441)
    samples = reducer.reduce(AudioFrame(0, pcm.tobytes(), 44100))
    assert len(samples) == 1
    assert samples[0].value == pytest.approx(0.5)


def test_partial_window_carries_over():
    reducer = AmplitudeReducer(VisualizationSettings(tick_ms=20))
    assert reducer.reduce(constant_frame(0, 8192, 441)) == []
    samples = reducer.reduce(constant_frame(1, 16384, 441))
    assert len(samples) == 1
    assert samples[0].index == 0
    assert samples[0].value == pytest.approx(0.5)


def test_multichannel_uses_loudest_channel():
    reducer = AmplitudeReducer(VisualizationSettings(tick_ms=20))
    pcm = np.zeros((882, 2), dtype=np.int16)
    pcm[:, 1] = -16384
    samples = reducer.reduce(AudioFrame(0, pcm.tobytes(), 44100, 2))
    assert samples[0].value == pytest.approx(0.5)


def test_drop_oldest_queue():
    q = DropOldestQueue(2)
    assert q.put(1) is False
    assert q.put(2) is False
    assert q.put(3) is True
    assert q.dropped == 1
    assert q.get() == 2
    assert q.get() == 3
    with pytest.raises(Empty):
        q.get(timeout=0.01)


def test_closed_queue_drains_then_raises():
    q = DropOldestQueue(4)
    q.put("a")
    q.close()
    assert q.get() == "a"
    with pytest.raises(Empty):
        q.get()


def test_submit_never_blocks_and_counts_drops():
    reducer = AmplitudeReducer(VisualizationSettings(queue_size=4))
    for sequence in range(100):
        reducer.submit(constant_frame(sequence, 100, 441))
    assert reducer.dropped_frames == 96


def test_subscribe_since_checkpoint_replays_history():
    reducer = AmplitudeReducer(VisualizationSettings(history_size=4))
    reducer.publish([AmplitudeSample(i, i * 0.02, 0.1) for i in range(6)])

    live = reducer.subscribe()
    assert live.poll() == []

    resumed = reducer.subscribe(since=3)
    assert [sample.index for sample in resumed.poll()] == [4, 5]
    assert resumed.checkpoint == 5

    # only the retained ring is replayed
    everything = reducer.subscribe(since=-1)
    assert [sample.index for sample in everything.poll()] == [2, 3, 4, 5]


def test_subscription_buffer_drops_oldest():
    reducer = AmplitudeReducer()
    subscription = reducer.subscribe(capacity=2)
    reducer.publish([AmplitudeSample(i, 0.0, 0.0) for i in range(5)])
    assert subscription.dropped == 3
    assert [sample.index for sample in subscription.poll()] == [3, 4]


def test_iteration_ends_when_reducer_stops():
    reducer = AmplitudeReducer(VisualizationSettings(tick_ms=20))
    subscription = reducer.subscribe()
    reducer.start()
    for sequence in range(10):
        reducer.submit(constant_frame(sequence, 8192, 882))
    reducer.stop()

    samples = list(subscription)
    assert [sample.index for sample in samples] == list(range(10))
    assert all(sample.value == pytest.approx(0.25) for sample in samples)
    assert not reducer.running


def test_stop_without_drain_discards_queued_frames():
    reducer = AmplitudeReducer()
    subscription = reducer.subscribe()
    for sequence in range(5):
        reducer.submit(constant_frame(sequence, 8192, 882))
    reducer.stop(drain=False)
    assert list(subscription) == []


def test_closed_subscription_stops_receiving():
    reducer = AmplitudeReducer()
    subscription = reducer.subscribe()
    subscription.close()
    reducer.publish([AmplitudeSample(0, 0.0, 0.3)])
    assert subscription.closed
    assert subscription.poll() == []
