"""Artifact storage for PawnAI Studio.

An artifact is a buffer of 16-bit PCM audio at some stage of the pipeline:
the raw capture, a rendered preview or a final export.  Components never hold
raw buffers, only :class:`ArtifactHandle` values, so undo and history changes
rebind handles instead of copying audio.

Lifetime contract
-----------------
``allocate(format)``
    Open a new writable artifact and return its (unsealed) handle.
``append(handle, data)``
    Add PCM bytes to an unsealed artifact.
``seal(handle)``
    Make the artifact immutable.  The sealed handle's key is the SHA-256 of
    the format descriptor and the PCM bytes, so identical audio is stored once
    and reference counted.
``read(handle)``
    Return the PCM bytes of a sealed artifact.
``retain(handle)`` / ``release(handle)``
    Add or drop a reference; the artifact is deleted when the count reaches
    zero.  Releasing an unsealed artifact discards it.

Two stores are provided: :class:`MemoryArtifactStore` and
:class:`FileArtifactStore`, which keeps sealed artifacts as lossless audio
files (FLAC or WAV) through ``soundfile``.
"""

import hashlib
import json
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

import numpy as np
import soundfile as sf
from loguru import logger

from .errors import ArtifactNotFound, ArtifactNotSealed, ArtifactSealed
from .frames import AudioFormat

LOSSLESS_FORMATS = ('flac', 'wav')


@dataclass(frozen=True)
class ArtifactHandle:
    """Opaque reference to a stored artifact."""

    key: str
    sealed: bool = False

    def __str__(self) -> str:
        return self.key


@dataclass(frozen=True)
class ArtifactInfo:
    """Metadata of a stored artifact."""

    handle: ArtifactHandle
    format: AudioFormat
    sample_count: int
    references: int = 1

    @property
    def duration(self) -> float:
        """Duration in seconds."""
        return self.sample_count / self.format.sample_rate

    @property
    def size(self) -> int:
        """PCM size in bytes."""
        return self.sample_count * self.format.bytes_per_frame


def content_key(data: bytes, audio_format: AudioFormat) -> str:
    """Content address of *data* in *audio_format*."""
    digest = hashlib.sha256()
    digest.update(json.dumps(audio_format.to_dict(), sort_keys=True).encode("utf-8"))
    digest.update(data)
    return digest.hexdigest()


class ArtifactStore(ABC):
    """Content-addressed holder of audio artifacts."""

    @abstractmethod
    def allocate(self, audio_format: AudioFormat) -> ArtifactHandle:
        """Open a new, empty, writable artifact."""

    @abstractmethod
    def append(self, handle: ArtifactHandle, data: bytes) -> None:
        """Append PCM bytes to an unsealed artifact."""

    @abstractmethod
    def seal(self, handle: ArtifactHandle) -> ArtifactHandle:
        """Make an artifact immutable and return its content-addressed handle."""

    @abstractmethod
    def read(self, handle: ArtifactHandle) -> bytes:
        """Return the PCM bytes of a sealed artifact."""

    @abstractmethod
    def retain(self, handle: ArtifactHandle) -> None:
        """Add a reference to a sealed artifact."""

    @abstractmethod
    def release(self, handle: ArtifactHandle) -> None:
        """Drop a reference; the artifact is deleted when none remain."""

    @abstractmethod
    def info(self, handle: ArtifactHandle) -> ArtifactInfo:
        """Return metadata for a sealed or in-progress artifact."""

    @abstractmethod
    def list_artifacts(self) -> List[ArtifactInfo]:
        """Return metadata for every sealed artifact."""

    def resolves(self, handle: ArtifactHandle) -> bool:
        """Whether *handle* refers to a live sealed artifact."""
        if not handle.sealed:
            return False
        try:
            self.info(handle)
        except ArtifactNotFound:
            return False
        return True

    def get_handle(self, key: str) -> ArtifactHandle:
        """Return the sealed handle stored under *key*."""
        handle = ArtifactHandle(key, sealed=True)
        if not self.resolves(handle):
            raise ArtifactNotFound(f"No artifact with key {key}")
        return handle

    def put(self, data: bytes, audio_format: AudioFormat) -> ArtifactHandle:
        """Store *data* as a new sealed artifact."""
        handle = self.allocate(audio_format)
        self.append(handle, data)
        return self.seal(handle)


class MemoryArtifactStore(ArtifactStore):
    """Thread-safe in-memory artifact store."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._pending: Dict[str, tuple] = {}
        self._sealed: Dict[str, tuple] = {}
        self._references: Dict[str, int] = {}

    def allocate(self, audio_format: AudioFormat) -> ArtifactHandle:
        key = uuid.uuid4().hex
        with self._lock:
            self._pending[key] = (audio_format, bytearray())
        return ArtifactHandle(key)

    def append(self, handle: ArtifactHandle, data: bytes) -> None:
        with self._lock:
            _, buffer = self._pending_entry(handle)
            buffer.extend(data)

    def seal(self, handle: ArtifactHandle) -> ArtifactHandle:
        with self._lock:
            audio_format, buffer = self._pending_entry(handle)
            data = bytes(buffer)
            key = content_key(data, audio_format)
            del self._pending[handle.key]
            if key in self._sealed:
                self._references[key] += 1
            else:
                self._sealed[key] = (audio_format, data)
                self._references[key] = 1
        logger.debug(f"Sealed artifact {key[:12]} ({len(data)} bytes)")
        return ArtifactHandle(key, sealed=True)

    def read(self, handle: ArtifactHandle) -> bytes:
        with self._lock:
            return self._sealed_entry(handle)[1]

    def retain(self, handle: ArtifactHandle) -> None:
        with self._lock:
            self._sealed_entry(handle)
            self._references[handle.key] += 1

    def release(self, handle: ArtifactHandle) -> None:
        with self._lock:
            if not handle.sealed:
                self._pending_entry(handle)
                del self._pending[handle.key]
                return
            self._sealed_entry(handle)
            self._references[handle.key] -= 1
            if self._references[handle.key] == 0:
                del self._sealed[handle.key]
                del self._references[handle.key]

    def info(self, handle: ArtifactHandle) -> ArtifactInfo:
        with self._lock:
            if handle.sealed:
                audio_format, data = self._sealed_entry(handle)
                references = self._references[handle.key]
            else:
                audio_format, data = self._pending_entry(handle)
                references = 1
        return ArtifactInfo(handle, audio_format, len(data) // audio_format.bytes_per_frame, references)

    def list_artifacts(self) -> List[ArtifactInfo]:
        with self._lock:
            keys = list(self._sealed)
        return [self.info(ArtifactHandle(key, sealed=True)) for key in keys]

    def _pending_entry(self, handle: ArtifactHandle) -> tuple:
        if handle.sealed:
            raise ArtifactSealed(f"Artifact {handle.key} is sealed")
        try:
            return self._pending[handle.key]
        except KeyError:
            raise ArtifactNotFound(f"No pending artifact {handle.key}") from None

    def _sealed_entry(self, handle: ArtifactHandle) -> tuple:
        if not handle.sealed:
            if handle.key in self._pending:
                raise ArtifactNotSealed(f"Artifact {handle.key} is still being written")
            raise ArtifactNotFound(f"No artifact {handle.key}")
        try:
            return self._sealed[handle.key]
        except KeyError:
            raise ArtifactNotFound(f"No artifact {handle.key}") from None


class FileArtifactStore(ArtifactStore):
    """Artifact store backed by a directory of lossless audio files.

    In-progress artifacts are raw PCM files under ``pending/``; sealing writes
    ``<key>.<file_format>`` with ``soundfile`` and removes the PCM file.
    Existing audio files in *storage_dir* are indexed on start-up so artifacts
    survive between runs.
    """

    def __init__(self, storage_dir: Union[str, Path] = "artifacts/", file_format: str = "flac") -> None:
        """Initialize the store.

        Args:
            storage_dir: Root directory for artifacts
            file_format: Container for sealed artifacts ('flac' or 'wav')

        Raises:
            ValueError: If the container is not lossless
        """
        file_format = file_format.lower()
        if file_format not in LOSSLESS_FORMATS:
            raise ValueError(
                f"Artifacts must use a lossless format ({', '.join(LOSSLESS_FORMATS)}), got {file_format}"
            )
        self.storage_dir = Path(storage_dir)
        self.pending_dir = self.storage_dir / "pending"
        self.pending_dir.mkdir(parents=True, exist_ok=True)
        self._file_format = file_format
        self._lock = threading.Lock()
        self._pending: Dict[str, AudioFormat] = {}
        self._sealed: Dict[str, ArtifactInfo] = {}
        self._index_existing()

    def _index_existing(self) -> None:
        """Register sealed artifacts already present on disk."""
        for audio_file in sorted(self.storage_dir.glob(f"*.{self._file_format}")):
            try:
                file_info = sf.info(str(audio_file))
            except RuntimeError as e:
                logger.warning(f"Skipping unreadable artifact {audio_file.name}: {e}")
                continue
            handle = ArtifactHandle(audio_file.stem, sealed=True)
            self._sealed[handle.key] = ArtifactInfo(
                handle,
                AudioFormat(int(file_info.samplerate), int(file_info.channels)),
                int(file_info.frames),
            )
        if self._sealed:
            logger.info(f"Indexed {len(self._sealed)} artifact(s) in {self.storage_dir}")

    def path_for(self, handle: ArtifactHandle) -> Path:
        """Filesystem path of an artifact."""
        if handle.sealed:
            return self.storage_dir / f"{handle.key}.{self._file_format}"
        return self.pending_dir / f"{handle.key}.pcm"

    def allocate(self, audio_format: AudioFormat) -> ArtifactHandle:
        handle = ArtifactHandle(uuid.uuid4().hex)
        with self._lock:
            self._pending[handle.key] = audio_format
            self.path_for(handle).touch()
        return handle

    def append(self, handle: ArtifactHandle, data: bytes) -> None:
        with self._lock:
            self._pending_format(handle)
            with self.path_for(handle).open("ab") as fh:
                fh.write(data)

    def seal(self, handle: ArtifactHandle) -> ArtifactHandle:
        with self._lock:
            audio_format = self._pending_format(handle)
            pending_path = self.path_for(handle)
            data = pending_path.read_bytes()
            sealed = ArtifactHandle(content_key(data, audio_format), sealed=True)

            if sealed.key in self._sealed:
                existing = self._sealed[sealed.key]
                self._sealed[sealed.key] = ArtifactInfo(
                    sealed, existing.format, existing.sample_count, existing.references + 1
                )
            else:
                samples = np.frombuffer(data, dtype=np.int16).reshape(-1, audio_format.channels)
                sf.write(
                    str(self.path_for(sealed)),
                    samples,
                    audio_format.sample_rate,
                    subtype='PCM_16',
                    format=self._file_format.upper(),
                )
                self._sealed[sealed.key] = ArtifactInfo(sealed, audio_format, samples.shape[0])

            pending_path.unlink()
            del self._pending[handle.key]
        logger.info(f"Saved artifact: {self.path_for(sealed)}")
        return sealed

    def read(self, handle: ArtifactHandle) -> bytes:
        with self._lock:
            self._sealed_info(handle)
            samples, _ = sf.read(str(self.path_for(handle)), dtype='int16', always_2d=True)
        return samples.tobytes()

    def retain(self, handle: ArtifactHandle) -> None:
        with self._lock:
            info = self._sealed_info(handle)
            self._sealed[handle.key] = ArtifactInfo(
                info.handle, info.format, info.sample_count, info.references + 1
            )

    def release(self, handle: ArtifactHandle) -> None:
        with self._lock:
            if not handle.sealed:
                self._pending_format(handle)
                self.path_for(handle).unlink()
                del self._pending[handle.key]
                return
            info = self._sealed_info(handle)
            if info.references > 1:
                self._sealed[handle.key] = ArtifactInfo(
                    info.handle, info.format, info.sample_count, info.references - 1
                )
                return
            self.path_for(handle).unlink()
            del self._sealed[handle.key]
        logger.info(f"Deleted artifact: {handle.key}")

    def info(self, handle: ArtifactHandle) -> ArtifactInfo:
        with self._lock:
            if handle.sealed:
                return self._sealed_info(handle)
            audio_format = self._pending_format(handle)
            size = self.path_for(handle).stat().st_size
        return ArtifactInfo(handle, audio_format, size // audio_format.bytes_per_frame)

    def list_artifacts(self) -> List[ArtifactInfo]:
        with self._lock:
            return list(self._sealed.values())

    def _pending_format(self, handle: ArtifactHandle) -> AudioFormat:
        if handle.sealed:
            raise ArtifactSealed(f"Artifact {handle.key} is sealed")
        try:
            return self._pending[handle.key]
        except KeyError:
            raise ArtifactNotFound(f"No pending artifact {handle.key}") from None

    def _sealed_info(self, handle: ArtifactHandle) -> ArtifactInfo:
        if not handle.sealed:
            if handle.key in self._pending:
                raise ArtifactNotSealed(f"Artifact {handle.key} is still being written")
            raise ArtifactNotFound(f"No artifact {handle.key}")
        try:
            return self._sealed[handle.key]
        except KeyError:
            raise ArtifactNotFound(f"No artifact {handle.key}") from None


def export_artifact(
    store: ArtifactStore,
    handle: ArtifactHandle,
    path: Union[str, Path],
    file_format: Optional[str] = None,
) -> Path:
    """Write a sealed artifact to an audio file.

    Args:
        store: Store holding the artifact
        handle: Sealed artifact handle
        path: Destination file
        file_format: Container (flac, wav, ogg, ...). Defaults to the suffix of *path*

    Returns:
        Path of the written file
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    info = store.info(handle)
    samples = np.frombuffer(store.read(handle), dtype=np.int16).reshape(-1, info.format.channels)

    container = (file_format or path.suffix.lstrip('.') or 'flac').upper()
    if container == 'OGG':
        # Vorbis encodes float input (-1.0 to 1.0 range)
        sf.write(str(path), samples.astype(np.float32) / 32768.0, info.format.sample_rate,
                 subtype='VORBIS', format=container)
    else:
        sf.write(str(path), samples, info.format.sample_rate, subtype='PCM_16', format=container)
    logger.info(f"Exported {handle.key[:12]} to {path} ({info.duration:.2f}s)")
    return path
