"""Configuration management for PawnAI Studio.

This module provides configuration constants and the :class:`AppConfig` class
which merges defaults with values from an optional YAML file
(``.pawnai-studio.yml`` in the working directory).

Capture constants
-----------------
- ``RATE``                 – sample rate in Hz (default 44 100)
- ``CHANNELS``             – number of input channels (default 1 / mono)
- ``FRAME_SIZE``           – samples per channel in one captured frame
- ``FIRST_FRAME_TIMEOUT``  – seconds a source may take to yield its first frame
- ``WRITE_QUEUE_SIZE``     – frames buffered between capture and the store

Visualization constants
-----------------------
- ``TICK_MS``              – audio milliseconds per amplitude sample
- ``AMPLITUDE_MODE``       – ``'peak'`` or ``'rms'``
- ``VIZ_QUEUE_SIZE``       – frames buffered for the reducer (drop-oldest)
- ``AMPLITUDE_HISTORY``    – samples retained for checkpoint replay

Pipeline constants
------------------
- ``PITCH_RATIO_MIN`` / ``PITCH_RATIO_MAX`` – bounds for pitch shift
- ``MIX_GAIN_MAX``         – upper bound for background mix gain
- ``CACHE_SIZE``           – rendered artifacts kept per pipeline

Configuration file
------------------
All constants above can be overridden at runtime via ``.pawnai-studio.yml``
placed in the project root:

.. code-block:: yaml

    recording:
      rate: 48000
      frame_size: 960
      first_frame_timeout: 3.0
    visualization:
      tick_ms: 25
      amplitude_mode: rms
    pipeline:
      cache_size: 32
    storage:
      storage_dir: artifacts/
      file_extension: wav
    log:
      file: sessions.jsonl
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

# Capture parameters
RATE = 44100
CHANNELS = 1
FRAME_SIZE = 1024
FIRST_FRAME_TIMEOUT = 2.0
WRITE_QUEUE_SIZE = 256

# Visualization parameters
TICK_MS = 20
AMPLITUDE_MODE = 'peak'
VIZ_QUEUE_SIZE = 64
AMPLITUDE_HISTORY = 512

# Transform pipeline parameters
PITCH_RATIO_MIN = 0.5
PITCH_RATIO_MAX = 2.0
MIX_GAIN_MAX = 2.0
CACHE_SIZE = 16

# Storage
STORAGE_DIR = 'artifacts/'
FILE_EXTENSION = 'flac'  # lossless containers only: 'flac' or 'wav'

CONFIG_FILE = '.pawnai-studio.yml'
LOG_FILE = 'sessions.jsonl'
DATETIME_FORMAT = '%y%m%d%H%M%S'

AMPLITUDE_MODES = ('peak', 'rms')

_SECTIONS = ('recording', 'visualization', 'pipeline', 'storage')


@dataclass
class CaptureSettings:
    """Settings for the recording controller and frame sources."""

    rate: int = RATE
    channels: int = CHANNELS
    frame_size: int = FRAME_SIZE
    first_frame_timeout: float = FIRST_FRAME_TIMEOUT
    write_queue_size: int = WRITE_QUEUE_SIZE
    datetime_format: str = DATETIME_FORMAT

    def __post_init__(self):
        """Validate configuration values."""
        if self.rate <= 0:
            raise ValueError("Sample rate must be positive")
        if self.channels <= 0:
            raise ValueError("Channels must be positive")
        if self.frame_size <= 0:
            raise ValueError("Frame size must be positive")
        if self.first_frame_timeout <= 0:
            raise ValueError("First frame timeout must be positive")
        if self.write_queue_size <= 0:
            raise ValueError("Write queue size must be positive")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CaptureSettings":
        return cls(
            rate=int(data.get("rate", RATE)),
            channels=int(data.get("channels", CHANNELS)),
            frame_size=int(data.get("frame_size", FRAME_SIZE)),
            first_frame_timeout=float(data.get("first_frame_timeout", FIRST_FRAME_TIMEOUT)),
            write_queue_size=int(data.get("write_queue_size", WRITE_QUEUE_SIZE)),
            datetime_format=str(data.get("datetime_format", DATETIME_FORMAT)),
        )


@dataclass
class VisualizationSettings:
    """Settings for the amplitude reducer."""

    tick_ms: int = TICK_MS
    amplitude_mode: str = AMPLITUDE_MODE
    queue_size: int = VIZ_QUEUE_SIZE
    history_size: int = AMPLITUDE_HISTORY

    def __post_init__(self):
        """Validate configuration values."""
        if self.tick_ms <= 0:
            raise ValueError("Tick length must be positive")
        if self.amplitude_mode not in AMPLITUDE_MODES:
            raise ValueError(
                f"Amplitude mode must be one of {', '.join(AMPLITUDE_MODES)}, "
                f"got {self.amplitude_mode!r}"
            )
        if self.queue_size <= 0 or self.history_size <= 0:
            raise ValueError("Queue and history sizes must be positive")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VisualizationSettings":
        return cls(
            tick_ms=int(data.get("tick_ms", TICK_MS)),
            amplitude_mode=str(data.get("amplitude_mode", AMPLITUDE_MODE)),
            queue_size=int(data.get("viz_queue_size", VIZ_QUEUE_SIZE)),
            history_size=int(data.get("amplitude_history", AMPLITUDE_HISTORY)),
        )


@dataclass
class PipelineSettings:
    """Bounds and cache size for the transform pipeline."""

    pitch_min: float = PITCH_RATIO_MIN
    pitch_max: float = PITCH_RATIO_MAX
    mix_gain_max: float = MIX_GAIN_MAX
    cache_size: int = CACHE_SIZE

    def __post_init__(self):
        """Validate configuration values."""
        if not 0 < self.pitch_min <= 1.0 <= self.pitch_max:
            raise ValueError("Pitch bounds must satisfy 0 < pitch_min <= 1 <= pitch_max")
        if self.mix_gain_max <= 0:
            raise ValueError("Mix gain bound must be positive")
        if self.cache_size < 1:
            raise ValueError("Cache size must be at least 1")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PipelineSettings":
        return cls(
            pitch_min=float(data.get("pitch_min", PITCH_RATIO_MIN)),
            pitch_max=float(data.get("pitch_max", PITCH_RATIO_MAX)),
            mix_gain_max=float(data.get("mix_gain_max", MIX_GAIN_MAX)),
            cache_size=int(data.get("cache_size", CACHE_SIZE)),
        )


class AppConfig:
    """Application configuration management."""

    def __init__(self) -> None:
        """Initialize configuration with defaults."""
        self._config: Dict[str, Any] = {
            'rate': RATE,
            'channels': CHANNELS,
            'frame_size': FRAME_SIZE,
            'first_frame_timeout': FIRST_FRAME_TIMEOUT,
            'write_queue_size': WRITE_QUEUE_SIZE,
            'datetime_format': DATETIME_FORMAT,
            'tick_ms': TICK_MS,
            'amplitude_mode': AMPLITUDE_MODE,
            'viz_queue_size': VIZ_QUEUE_SIZE,
            'amplitude_history': AMPLITUDE_HISTORY,
            'pitch_min': PITCH_RATIO_MIN,
            'pitch_max': PITCH_RATIO_MAX,
            'mix_gain_max': MIX_GAIN_MAX,
            'cache_size': CACHE_SIZE,
            'storage_dir': STORAGE_DIR,
            'file_extension': FILE_EXTENSION,
        }
        self._load_yaml_config()

    def _load_yaml_config(self) -> None:
        """Load optional YAML configuration from project root."""
        config_path = Path.cwd() / CONFIG_FILE
        if not config_path.exists():
            return

        content = yaml.safe_load(config_path.read_text(encoding='utf-8'))
        if not content:
            return

        if not isinstance(content, dict):
            raise ValueError(f"Configuration in {CONFIG_FILE} must be a mapping")

        for section in _SECTIONS:
            section_config = content.get(section)
            if isinstance(section_config, dict):
                for key in self._config.keys():
                    if key in section_config:
                        self._config[key] = section_config[key]

        for key, value in content.items():
            if key in _SECTIONS:
                continue
            self._config[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value.

        Args:
            key: Configuration key
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        return self._config.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Set configuration value.

        Args:
            key: Configuration key
            value: Configuration value
        """
        self._config[key] = value

    def capture_settings(self) -> CaptureSettings:
        return CaptureSettings.from_dict(self._config)

    def visualization_settings(self) -> VisualizationSettings:
        return VisualizationSettings.from_dict(self._config)

    def pipeline_settings(self) -> PipelineSettings:
        return PipelineSettings.from_dict(self._config)

    def get_storage_dir(self) -> Path:
        """Get artifact storage directory as Path object.

        Returns:
            Storage directory path (created if missing)
        """
        storage_dir = self._config.get('storage_dir', STORAGE_DIR)
        path = Path(storage_dir)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def get_log_path(self, storage_dir: Optional[Path] = None) -> Path:
        """Return the session journal file path.

        The file name is taken from the ``log.file`` key in
        ``.pawnai-studio.yml`` when present, otherwise from the
        :data:`LOG_FILE` constant.  The file is placed inside *storage_dir*
        (defaults to :meth:`get_storage_dir`).

        Args:
            storage_dir: Directory that will contain the journal.  When
                ``None`` the configured ``storage_dir`` is used.

        Returns:
            Path including the journal filename.
        """
        log_config = self._config.get('log')
        log_file = LOG_FILE
        if isinstance(log_config, dict):
            log_file = log_config.get('file', LOG_FILE)
        base = Path(storage_dir) if storage_dir is not None else self.get_storage_dir()
        return base / log_file
