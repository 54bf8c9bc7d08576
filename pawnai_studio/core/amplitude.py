"""Real-time amplitude reduction for waveform visualization.

The reducer turns captured frames into :class:`AmplitudeSample` values, one
per ``tick_ms`` milliseconds of audio.  It is deliberately decoupled from
capture:

- frames reach the reducer through a bounded :class:`DropOldestQueue`;
  :meth:`AmplitudeReducer.submit` never blocks, and when the worker falls
  behind the oldest queued frames are dropped;
- each :class:`AmplitudeSubscription` has its own bounded buffer with the same
  policy, so a slow visualization consumer only loses ticks of its own.

Losing a waveform tick is cosmetic; the raw capture path never waits on
anything in this module.

Usage::

    reducer = AmplitudeReducer(VisualizationSettings(tick_ms=20))
    subscription = reducer.subscribe()
    reducer.start()
    ...
    for sample in subscription:      # ends when the reducer stops
        draw(sample.timestamp, sample.value)

A consumer that reconnects can pass the last index it saw as a checkpoint,
``reducer.subscribe(since=subscription.checkpoint)``, and receives the
retained samples after it before live ones.
"""

import threading
from collections import deque
from dataclasses import dataclass
from queue import Empty
from typing import Deque, Generic, Iterator, List, Optional, TypeVar

import numpy as np
from loguru import logger

from .config import VisualizationSettings
from .frames import AudioFrame
from .processing import pcm_to_mono, peak_amplitude, rms_amplitude

T = TypeVar("T")


@dataclass(frozen=True)
class AmplitudeSample:
    """Magnitude of one visualization tick."""

    index: int
    timestamp: float
    value: float


class DropOldestQueue(Generic[T]):
    """Bounded FIFO whose ``put`` never blocks; a full queue evicts its oldest item."""

    def __init__(self, maxsize: int) -> None:
        self._items: Deque[T] = deque(maxlen=maxsize)
        self._condition = threading.Condition()
        self._closed = False
        self.dropped = 0

    def __len__(self) -> int:
        with self._condition:
            return len(self._items)

    @property
    def closed(self) -> bool:
        return self._closed

    def put(self, item: T) -> bool:
        """Enqueue *item*.  Returns ``True`` if an older item was dropped."""
        with self._condition:
            dropped = len(self._items) == self._items.maxlen
            if dropped:
                self.dropped += 1
            self._items.append(item)
            self._condition.notify()
            return dropped

    def get(self, timeout: Optional[float] = None) -> T:
        """Dequeue the oldest item.

        Raises:
            queue.Empty: Nothing arrived within *timeout*, or the queue is
                closed and drained
        """
        with self._condition:
            if not self._items and not self._closed:
                self._condition.wait(timeout)
            if not self._items:
                raise Empty
            return self._items.popleft()

    def drain(self) -> List[T]:
        with self._condition:
            items = list(self._items)
            self._items.clear()
            return items

    def close(self) -> None:
        with self._condition:
            self._closed = True
            self._condition.notify_all()

    def reopen(self) -> None:
        with self._condition:
            self._closed = False
            self._items.clear()
            self.dropped = 0


class AmplitudeSubscription:
    """A consumer's view of the amplitude stream.

    Iterating blocks until samples arrive and ends when the reducer stops or
    the subscription is closed.  :meth:`poll` is the non-blocking alternative
    for render loops.
    """

    def __init__(self, reducer: "AmplitudeReducer", capacity: int) -> None:
        self._reducer = reducer
        self._queue: DropOldestQueue[AmplitudeSample] = DropOldestQueue(capacity)
        self.checkpoint: Optional[int] = None

    @property
    def dropped(self) -> int:
        """Samples lost because this consumer fell behind."""
        return self._queue.dropped

    @property
    def closed(self) -> bool:
        return self._queue.closed

    def _push(self, sample: AmplitudeSample) -> None:
        self._queue.put(sample)

    def _finish(self) -> None:
        self._queue.close()

    def get(self, timeout: Optional[float] = None) -> Optional[AmplitudeSample]:
        """Return the next sample, or ``None`` on timeout or end of stream."""
        try:
            sample = self._queue.get(timeout)
        except Empty:
            return None
        self.checkpoint = sample.index
        return sample

    def poll(self) -> List[AmplitudeSample]:
        """Return every buffered sample without waiting."""
        samples = self._queue.drain()
        if samples:
            self.checkpoint = samples[-1].index
        return samples

    def close(self) -> None:
        self._reducer.unsubscribe(self)
        self._finish()

    def __iter__(self) -> Iterator[AmplitudeSample]:
        while True:
            sample = self.get(timeout=0.1)
            if sample is not None:
                yield sample
            elif self.closed:
                remaining = self.poll()
                yield from remaining
                return


class AmplitudeReducer:
    """Reduces captured frames to amplitude samples on a worker thread."""

    def __init__(self, settings: Optional[VisualizationSettings] = None) -> None:
        self._settings = settings or VisualizationSettings()
        self._frames: DropOldestQueue[AudioFrame] = DropOldestQueue(self._settings.queue_size)
        self._history: Deque[AmplitudeSample] = deque(maxlen=self._settings.history_size)
        self._subscriptions: List[AmplitudeSubscription] = []
        self._lock = threading.Lock()
        self._worker: Optional[threading.Thread] = None
        self._carry: Optional[np.ndarray] = None
        self._next_index = 0

    @property
    def settings(self) -> VisualizationSettings:
        return self._settings

    @property
    def dropped_frames(self) -> int:
        """Frames discarded because the reducer fell behind capture."""
        return self._frames.dropped

    @property
    def running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def window(self, sample_rate: int) -> int:
        """Samples per tick at *sample_rate*."""
        return max(1, int(round(sample_rate * self._settings.tick_ms / 1000)))

    def reduce(self, frame: AudioFrame) -> List[AmplitudeSample]:
        """Reduce one frame, carrying an incomplete tick over to the next call."""
        samples = pcm_to_mono(frame.data, frame.channels)
        if self._carry is not None:
            samples = np.concatenate([self._carry, samples])
            self._carry = None

        window = self.window(frame.sample_rate)
        measure = peak_amplitude if self._settings.amplitude_mode == 'peak' else rms_amplitude
        complete = (samples.shape[0] // window) * window
        results = []
        for offset in range(0, complete, window):
            index = self._next_index
            self._next_index += 1
            results.append(AmplitudeSample(
                index=index,
                timestamp=index * self._settings.tick_ms / 1000.0,
                value=measure(samples[offset:offset + window]),
            ))
        if complete < samples.shape[0]:
            self._carry = samples[complete:]
        return results

    def submit(self, frame: AudioFrame) -> None:
        """Queue a frame for reduction without blocking."""
        if self._frames.put(frame):
            logger.debug(f"Visualization behind capture, dropped a frame ({self._frames.dropped} total)")

    def subscribe(self, since: Optional[int] = None, capacity: Optional[int] = None) -> AmplitudeSubscription:
        """Start listening.

        Args:
            since: Checkpoint index; retained samples after it are replayed
                first.  ``None`` means live samples only.
            capacity: Buffer size of this subscription (defaults to the
                configured history size)
        """
        subscription = AmplitudeSubscription(self, capacity or self._settings.history_size)
        with self._lock:
            if since is not None:
                for sample in self._history:
                    if sample.index > since:
                        subscription._push(sample)
            self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: AmplitudeSubscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def publish(self, samples: List[AmplitudeSample]) -> None:
        with self._lock:
            self._history.extend(samples)
            subscriptions = list(self._subscriptions)
        for sample in samples:
            for subscription in subscriptions:
                subscription._push(sample)

    def start(self) -> None:
        """Reset tick numbering and start the worker thread."""
        if self.running:
            return
        self._frames.reopen()
        self._carry = None
        self._next_index = 0
        with self._lock:
            self._history.clear()
        self._worker = threading.Thread(target=self._run, name="amplitude-reducer", daemon=True)
        self._worker.start()
        logger.debug("Amplitude reducer started")

    def stop(self, drain: bool = True, timeout: float = 5.0) -> None:
        """End every subscription.

        Args:
            drain: Reduce frames already queued first; otherwise discard them
            timeout: Seconds to wait for the worker thread
        """
        if not drain:
            self._frames.drain()
        self._frames.close()
        if self._worker is not None:
            self._worker.join(timeout=timeout)
            self._worker = None
        with self._lock:
            subscriptions = list(self._subscriptions)
            self._subscriptions.clear()
        for subscription in subscriptions:
            subscription._finish()
        logger.debug(f"Amplitude reducer stopped ({self._next_index} samples)")

    def _run(self) -> None:
        while True:
            try:
                frame = self._frames.get(timeout=0.1)
            except Empty:
                if self._frames.closed:
                    return
                continue
            self.publish(self.reduce(frame))
