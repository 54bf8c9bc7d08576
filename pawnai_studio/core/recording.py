"""Recording state machine for PawnAI Studio.

:class:`RecordingController` owns one capture session at a time:

.. code-block:: text

    Idle ──start()──▶ Recording ──pause()──▶ Paused
                        ▲  │    ◀─resume()──  │
                        │  └──────stop()──────┴──▶ Stopped ──▶ Idle
    any state ──device / integrity error──▶ Failed ──reset()──▶ Idle

Threads
-------
The frame source pushes frames from its own thread through :meth:`deliver`.
Each accepted frame goes to two places:

- the raw write queue, a bounded :class:`queue.Queue` drained by a writer
  thread that appends to the capture artifact.  ``put`` blocks when the
  queue is full, so capture applies backpressure instead of losing audio;
- the :class:`~pawnai_studio.core.amplitude.AmplitudeReducer`, whose
  ``submit`` never blocks.

The capture artifact is sealed exactly once: at :meth:`stop`, or when the
session fails, to keep the audio captured up to the failure.
"""

import datetime
import queue
import threading
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Dict, FrozenSet, List, Optional

from loguru import logger

from .amplitude import AmplitudeReducer
from .config import CaptureSettings
from .errors import (
    CaptureError,
    DeviceUnavailable,
    FrameFormatMismatch,
    FrameSequenceViolation,
    InvalidTransition,
    PermissionDenied,
)
from .frames import AudioFormat, AudioFrame, FrameSource
from .log import SessionJournal
from .storage import ArtifactHandle, ArtifactStore


class RecordingState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    PAUSED = "paused"
    STOPPED = "stopped"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


_TRANSITIONS: Dict[str, FrozenSet[RecordingState]] = {
    "start": frozenset({RecordingState.IDLE}),
    "pause": frozenset({RecordingState.RECORDING}),
    "resume": frozenset({RecordingState.PAUSED}),
    "stop": frozenset({RecordingState.RECORDING, RecordingState.PAUSED}),
    "discard": frozenset({RecordingState.RECORDING, RecordingState.PAUSED}),
    "reset": frozenset({RecordingState.FAILED}),
}


@dataclass
class RecordingSession:
    """Snapshot of the capture session."""

    state: RecordingState = RecordingState.IDLE
    session_id: Optional[str] = None
    started_at: Optional[datetime.datetime] = None
    duration: float = 0.0
    capture: Optional[ArtifactHandle] = None
    last_error: Optional[CaptureError] = None
    frames_accepted: int = 0
    frames_rejected: int = 0
    last_sequence: Optional[int] = None


SessionListener = Callable[[RecordingSession], None]


class RecordingController:
    """Capture state machine feeding the artifact store and the amplitude reducer."""

    def __init__(
        self,
        source: FrameSource,
        store: ArtifactStore,
        reducer: Optional[AmplitudeReducer] = None,
        settings: Optional[CaptureSettings] = None,
        journal: Optional[SessionJournal] = None,
    ) -> None:
        """Initialize the controller.

        Args:
            source: Producer of audio frames
            store: Store receiving the raw capture
            reducer: Optional amplitude reducer fed with every accepted frame
            settings: Capture settings (timeouts, queue sizes)
            journal: Optional JSONL journal of session start/end
        """
        self._source = source
        self._store = store
        self._reducer = reducer
        self._settings = settings or CaptureSettings()
        self._journal = journal
        self._format = AudioFormat(source.sample_rate, source.channels)

        self._lock = threading.RLock()
        self._session = RecordingSession()
        self._listeners: List[SessionListener] = []
        self._first_frame = threading.Event()
        self._write_queue: "queue.Queue[Optional[bytes]]" = queue.Queue(self._settings.write_queue_size)
        self._writer: Optional[threading.Thread] = None
        self._write_error: Optional[Exception] = None
        self._failure_thread: Optional[threading.Thread] = None
        self._frames_written = 0

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def state(self) -> RecordingState:
        return self._session.state

    @property
    def session(self) -> RecordingSession:
        """A copy of the current session."""
        with self._lock:
            return replace(self._session)

    @property
    def reducer(self) -> Optional[AmplitudeReducer]:
        return self._reducer

    def add_listener(self, listener: SessionListener) -> None:
        """Call *listener* with a session snapshot after every transition."""
        self._listeners.append(listener)

    def _transition(self, state: RecordingState) -> None:
        with self._lock:
            self._session.state = state
            snapshot = replace(self._session)
        logger.debug(f"Recording state -> {state}")
        for listener in list(self._listeners):
            listener(snapshot)

    def _require(self, action: str) -> None:
        if self._session.state not in _TRANSITIONS[action]:
            raise InvalidTransition(action, self._session.state)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def start(self) -> RecordingSession:
        """Open the frame source and begin capturing.

        Raises:
            InvalidTransition: A session is already active
            DeviceUnavailable: The source failed to open or to yield a first
                frame within the configured timeout
            PermissionDenied: Access to the input device was refused
        """
        with self._lock:
            self._require("start")
            started_at = datetime.datetime.now()
            self._session = RecordingSession(
                session_id=started_at.strftime(self._settings.datetime_format),
                started_at=started_at,
                capture=self._store.allocate(self._format),
            )
            self._first_frame.clear()
            self._write_error = None
            self._failure_thread = None
            self._frames_written = 0
            self._write_queue = queue.Queue(self._settings.write_queue_size)
            self._writer = threading.Thread(target=self._write_frames, name="capture-writer", daemon=True)
            self._writer.start()
            if self._reducer is not None:
                self._reducer.start()
            self._transition(RecordingState.RECORDING)

        try:
            self._source.open(self)
        except CaptureError as error:
            self._fail(error)
            raise
        except PermissionError as error:
            failure = PermissionDenied(f"Access to audio input denied: {error}")
            self._fail(failure)
            raise failure from error
        except OSError as error:
            failure = DeviceUnavailable(f"Could not open audio input: {error}")
            self._fail(failure)
            raise failure from error

        if not self._first_frame.wait(self._settings.first_frame_timeout):
            failure = DeviceUnavailable(
                f"No audio received within {self._settings.first_frame_timeout:.1f}s"
            )
            self._fail(failure)
            self._source.close()
            raise failure

        session = self.session
        if session.state is RecordingState.FAILED:
            raise session.last_error
        logger.info(f"Recording started. Session ID: {session.session_id}")
        if self._journal is not None:
            self._journal.write_session_start(
                session_id=session.session_id,
                sample_rate=self._format.sample_rate,
                channels=self._format.channels,
                started_at=session.started_at,
            )
        return session

    def pause(self) -> None:
        with self._lock:
            self._require("pause")
            self._transition(RecordingState.PAUSED)
        logger.info("Recording paused")

    def resume(self) -> None:
        with self._lock:
            self._require("resume")
            self._transition(RecordingState.RECORDING)
        logger.info("Recording resumed")

    def stop(self) -> ArtifactHandle:
        """Finish the session and return the sealed raw capture.

        All frames accepted before the call are flushed to the artifact.  The
        controller passes through ``Stopped`` and ends in ``Idle``.
        """
        with self._lock:
            self._require("stop")
            self._transition(RecordingState.STOPPED)

        self._source.close()
        self._finish_writer()
        if self._reducer is not None:
            self._reducer.stop()
        if self._write_error is not None:
            failure = DeviceUnavailable(f"Writing the capture failed: {self._write_error}")
            self._fail(failure)
            self._await_failure()
            raise self._session.last_error or failure

        with self._lock:
            capture = self._store.seal(self._session.capture)
            self._session.capture = capture
            session = replace(self._session)
        logger.info(
            f"Recording stopped: {session.duration:.2f}s, "
            f"{session.frames_accepted} frames, artifact {capture.key[:12]}"
        )
        self._write_session_end(session)
        self._transition(RecordingState.IDLE)
        return capture

    def discard(self) -> None:
        """Abandon the session and release the in-progress capture."""
        with self._lock:
            self._require("discard")
            self._transition(RecordingState.STOPPED)

        self._source.close()
        self._finish_writer()
        if self._reducer is not None:
            self._reducer.stop()
        with self._lock:
            self._store.release(self._session.capture)
            self._session.capture = None
            session = replace(self._session)
        logger.info(f"Recording {session.session_id} discarded")
        self._write_session_end(session)
        self._transition(RecordingState.IDLE)

    def reset(self) -> Optional[ArtifactHandle]:
        """Leave ``Failed`` and return the preserved partial capture, if any."""
        self._await_failure()
        with self._lock:
            self._require("reset")
            preserved = self._session.capture
        self._source.close()
        self._transition(RecordingState.IDLE)
        return preserved

    # ------------------------------------------------------------------
    # Frame sink
    # ------------------------------------------------------------------

    def deliver(self, frame: AudioFrame) -> bool:
        """Accept one frame from the source.

        Returns:
            ``True`` if the frame was appended to the capture, ``False`` if it
            was rejected because the session is paused, not active or can no
            longer be written

        Raises:
            FrameSequenceViolation: The sequence number does not increase
            FrameFormatMismatch: The frame's format differs from the session's
        """
        with self._lock:
            state = self._session.state
            if state not in (RecordingState.RECORDING, RecordingState.PAUSED):
                return False

            failure: Optional[CaptureError] = None
            last = self._session.last_sequence
            if last is not None and frame.sequence <= last:
                failure = FrameSequenceViolation(last, frame.sequence)
            elif frame.format != self._format:
                failure = FrameFormatMismatch(
                    f"Frame format {frame.format} does not match session format {self._format}"
                )

            if failure is None:
                self._session.last_sequence = frame.sequence
                self._first_frame.set()
                if state is RecordingState.PAUSED:
                    self._session.frames_rejected += 1
                    return False
                if self._write_error is not None:
                    self._session.frames_rejected += 1
                    return False
                # blocks when the writer falls behind
                self._write_queue.put(frame.data)
                self._session.frames_accepted += 1
                self._session.duration += frame.duration

        if failure is not None:
            self._fail(failure)
            raise failure
        if self._reducer is not None:
            self._reducer.submit(frame)
        return True

    def fail(self, error: Exception) -> None:
        """Report a terminal error from the source."""
        if isinstance(error, CaptureError):
            failure = error
        elif isinstance(error, PermissionError):
            failure = PermissionDenied(str(error))
        else:
            failure = DeviceUnavailable(f"Audio input failed: {error}")
        self._fail(failure)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _fail(self, error: CaptureError) -> None:
        with self._lock:
            if self._session.state in (RecordingState.FAILED, RecordingState.IDLE):
                return
            self._session.last_error = error
            self._session.state = RecordingState.FAILED
            self._first_frame.set()
        logger.error(f"Recording failed: {error}")

        self._finish_writer()
        if self._reducer is not None:
            self._reducer.stop()
        with self._lock:
            capture = self._session.capture
            if capture is not None and not capture.sealed:
                if self._frames_written:
                    self._session.capture = self._store.seal(capture)
                    logger.warning(f"Partial capture preserved as {self._session.capture.key[:12]}")
                else:
                    self._store.release(capture)
                    self._session.capture = None
            session = replace(self._session)
        self._write_session_end(session)
        self._transition(RecordingState.FAILED)

    def _await_failure(self) -> None:
        failure_thread = self._failure_thread
        if failure_thread is not None and failure_thread is not threading.current_thread():
            failure_thread.join()

    def _finish_writer(self) -> None:
        with self._lock:
            writer, self._writer = self._writer, None
        if writer is None or writer is threading.current_thread():
            return
        self._write_queue.put(None)
        writer.join()

    def _write_frames(self) -> None:
        capture = self._session.capture
        write_queue = self._write_queue
        while True:
            data = write_queue.get()
            if data is None:
                return
            if self._write_error is not None:
                # keep draining so a producer blocked on a full queue is released
                continue
            try:
                self._store.append(capture, data)
                self._frames_written += 1
            except Exception as error:
                self._write_error = error
                logger.error(f"Error appending to capture {capture.key}: {error}")
                failure = DeviceUnavailable(f"Writing the capture failed: {error}")
                self._failure_thread = threading.Thread(
                    target=self._fail, args=(failure,), name="capture-failure", daemon=True
                )
                self._failure_thread.start()

    def _write_session_end(self, session: RecordingSession) -> None:
        if self._journal is None:
            return
        self._journal.write_session_end(
            session_id=session.session_id,
            state=str(session.state),
            total_duration_sec=session.duration,
            frame_count=session.frames_accepted,
            artifact_key=session.capture.key if session.capture is not None else None,
            error=str(session.last_error) if session.last_error is not None else None,
        )
