"""Frame sources for PawnAI Studio.

Main public classes
-------------------
:class:`MicrophoneFrameSource`
    Streams audio from a PyAudio input device.  Capture runs in PortAudio's
    callback thread, which pushes each buffer to the recording controller as
    a sequenced :class:`~pawnai_studio.core.frames.AudioFrame`.

:class:`SyntheticFrameSource`
    Generates a sine tone from a background thread, either as fast as the
    sink accepts it or paced in real time.  Useful for demos, soak tests and
    machines without an input device.

PyAudio is imported lazily so the editing engine works on machines without
PortAudio; install the ``microphone`` extra to record from hardware.
"""

import threading
import time
from typing import List, Optional

import numpy as np
from loguru import logger

from .config import CHANNELS, FRAME_SIZE, RATE
from .errors import CaptureError, DeviceUnavailable, PermissionDenied
from .frames import AudioFrame, FrameSink
from .processing import apply_gain, detect_driver_type


def list_input_devices(driver_filter: Optional[str] = None) -> List[dict]:
    """List all available input audio devices.

    Args:
        driver_filter: Optional driver type to filter by ('pulse', 'alsa', 'jack', 'usb', 'default')

    Returns:
        List of dicts with keys: id, name, driver, channels, rate, is_default
    """
    import pyaudio

    audio = pyaudio.PyAudio()
    try:
        try:
            default_device_id = int(audio.get_default_input_device_info()['index'])
        except (IOError, OSError):
            default_device_id = -1

        input_devices = []
        for i in range(audio.get_device_count()):
            device_info = audio.get_device_info_by_index(i)
            if device_info.get('maxInputChannels', 0) <= 0:
                continue
            device_name = device_info.get('name', 'Unknown')
            driver_type = detect_driver_type(device_name)

            # Skip if driver filter is specified and doesn't match
            if driver_filter and driver_type != driver_filter.lower():
                continue

            input_devices.append({
                'id': i,
                'name': device_name,
                'driver': driver_type,
                'channels': int(device_info.get('maxInputChannels', 0)),
                'rate': int(device_info.get('defaultSampleRate', 0)),
                'is_default': i == default_device_id,
            })
        return input_devices
    finally:
        audio.terminate()


class MicrophoneFrameSource:
    """Pushes frames from a PyAudio input stream."""

    def __init__(
        self,
        device_id: Optional[int] = None,
        sample_rate: int = RATE,
        channels: int = CHANNELS,
        frame_size: int = FRAME_SIZE,
        gain_factor: float = 1.0,
    ) -> None:
        """Initialize the microphone source.

        Args:
            device_id: Audio device ID to use (``None`` = system default input)
            sample_rate: Sample rate in Hz
            channels: Number of input channels
            frame_size: Samples per channel in each frame
            gain_factor: Input gain factor
        """
        self.device_id = device_id
        self.sample_rate = sample_rate
        self.channels = channels
        self.frame_size = frame_size
        self._gain_factor = gain_factor
        self._sink: Optional[FrameSink] = None
        self._sequence = 0
        self._audio_interface = None
        self._audio_stream = None
        self.device_name = 'Unknown'

    def open(self, sink: FrameSink) -> None:
        """Open the input stream.

        Raises:
            PermissionDenied: The OS refused access to the device
            DeviceUnavailable: No such device, or it rejected the format
        """
        import pyaudio

        self._sink = sink
        self._sequence = 0
        try:
            self._audio_interface = pyaudio.PyAudio()
            if self.device_id is None:
                device_info = self._audio_interface.get_default_input_device_info()
            else:
                device_info = self._audio_interface.get_device_info_by_index(self.device_id)
            self.device_name = device_info.get('name', 'Unknown')

            self._audio_stream = self._audio_interface.open(
                format=pyaudio.paInt16,
                channels=self.channels,
                rate=self.sample_rate,
                input=True,
                input_device_index=self.device_id,
                frames_per_buffer=self.frame_size,
                stream_callback=self._fill_buffer,
            )
        except PermissionError as error:
            self.close()
            raise PermissionDenied(f"Access to input device denied: {error}") from error
        except (IOError, OSError, ValueError) as error:
            self.close()
            raise DeviceUnavailable(f"Cannot open input device {self.device_id}: {error}") from error

        logger.info(f"Microphone open: {self.device_name} (ID: {self.device_id}) at {self.sample_rate} Hz")

    def _fill_buffer(
        self,
        in_data: bytes,
        frame_count: int,
        time_info: object,
        status_flags: object,
    ) -> tuple:
        """Forward one PortAudio buffer to the sink.

        Args:
            in_data: The audio data as a bytes object
            frame_count: The number of frames captured
            time_info: The time information
            status_flags: The status flags

        Returns:
            Tuple of (data, status_flag)
        """
        import pyaudio

        frame = AudioFrame(
            sequence=self._sequence,
            data=apply_gain(in_data, self._gain_factor),
            sample_rate=self.sample_rate,
            channels=self.channels,
        )
        self._sequence += 1
        try:
            self._sink.deliver(frame)
        except CaptureError as error:
            logger.error(f"Stopping microphone stream: {error}")
            return None, pyaudio.paComplete
        return None, pyaudio.paContinue

    def close(self) -> None:
        """Close the input stream and release PortAudio."""
        if self._audio_stream is not None:
            self._audio_stream.stop_stream()
            self._audio_stream.close()
            self._audio_stream = None
        if self._audio_interface is not None:
            self._audio_interface.terminate()
            self._audio_interface = None
            logger.info('Microphone has been closed')


class SyntheticFrameSource:
    """Generates a sine tone as sequenced frames on a background thread."""

    def __init__(
        self,
        sample_rate: int = RATE,
        channels: int = CHANNELS,
        frame_size: int = FRAME_SIZE,
        frequency: float = 440.0,
        amplitude: float = 0.5,
        duration: Optional[float] = None,
        realtime: bool = False,
    ) -> None:
        """Initialize the generator.

        Args:
            sample_rate: Sample rate in Hz
            channels: Number of channels (the tone is copied to each)
            frame_size: Samples per channel in each frame
            frequency: Tone frequency in Hz
            amplitude: Peak amplitude (0..1)
            duration: Seconds of audio to generate; ``None`` runs until closed
            realtime: Sleep between frames to match the sample rate
        """
        self.sample_rate = sample_rate
        self.channels = channels
        self.frame_size = frame_size
        self.frequency = frequency
        self.amplitude = amplitude
        self.duration = duration
        self.realtime = realtime
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.finished = threading.Event()

    def frame(self, sequence: int, sample_offset: int, length: int) -> AudioFrame:
        """Build the frame starting *sample_offset* samples into the tone."""
        t = (sample_offset + np.arange(length)) / self.sample_rate
        tone = self.amplitude * np.sin(2 * np.pi * self.frequency * t)
        pcm = np.clip(np.rint(tone * 32767), -32767, 32767).astype(np.int16)
        interleaved = np.repeat(pcm[:, None], self.channels, axis=1)
        return AudioFrame(sequence, interleaved.tobytes(), self.sample_rate, self.channels)

    def open(self, sink: FrameSink) -> None:
        self._stop.clear()
        self.finished.clear()
        self._thread = threading.Thread(target=self._run, args=(sink,), name="synthetic-source", daemon=True)
        self._thread.start()

    def _run(self, sink: FrameSink) -> None:
        total = None if self.duration is None else int(round(self.duration * self.sample_rate))
        sequence = 0
        offset = 0
        started = time.monotonic()
        while not self._stop.is_set():
            length = self.frame_size if total is None else min(self.frame_size, total - offset)
            if length <= 0:
                break
            try:
                sink.deliver(self.frame(sequence, offset, length))
            except CaptureError as error:
                logger.warning(f"Synthetic source stopped: {error}")
                break
            sequence += 1
            offset += length
            if self.realtime:
                delay = started + offset / self.sample_rate - time.monotonic()
                if delay > 0:
                    self._stop.wait(delay)
        self.finished.set()

    def close(self) -> None:
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=5.0)
        self._thread = None
