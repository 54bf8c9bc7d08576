"""Deterministic transform pipeline.

The pipeline turns a sealed raw capture plus an ordered list of edit commands
into a rendered artifact.  Every render replays from the raw artifact; the
result is a pure function of ``(raw artifact, commands)``, so a preview and a
final export can never drift apart.

Validation
----------
:meth:`TransformPipeline.check` validates a command list without touching
audio by following the sample count through each stage (trim and pitch shift
change it, the other operations keep it).  Trim ranges are therefore checked
against the duration the audio actually has at that point in the chain.

Cancellation
------------
:meth:`TransformPipeline.render` accepts a :class:`CancelToken`.  The token is
checked between stages, never inside one, and a cancelled run raises
:class:`~pawnai_studio.core.errors.RecomputeCancelled` before anything is
written to the store.

Caching
-------
Rendered artifacts are cached in a bounded LRU keyed by the SHA-256 of the
raw artifact key and the command fingerprints.  The cache owns one store
reference per entry and releases it on eviction.
"""

import hashlib
import math
import threading
from collections import OrderedDict
from fractions import Fraction
from typing import Dict, Iterable, List, Optional

import numpy as np
from loguru import logger

from .config import PipelineSettings
from .edits import CommandKind, EditCommand, Mix, ToneChange, Trim
from .effects import TONE_PROFILES, ToneProfile, apply_tone, reduce_noise
from .errors import (
    ArtifactNotSealed,
    InvalidRange,
    MissingReference,
    ParameterOutOfRange,
    RecomputeCancelled,
    UnknownProfile,
)
from .frames import AudioFormat
from .processing import conform_channels, decode, encode, mix_buffers, resample
from .storage import ArtifactHandle, ArtifactStore

PITCH_MAX_DENOMINATOR = 100


class CancelToken:
    """Cooperative cancellation flag for one pipeline run."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RecomputeCancelled("Recomputation superseded by a newer edit")


def pitch_fraction(ratio: float) -> Fraction:
    """Rational approximation of a pitch ratio used for polyphase resampling."""
    return Fraction(ratio).limit_denominator(PITCH_MAX_DENOMINATOR)


def trim_bounds(command: Trim, sample_rate: int) -> tuple:
    return int(round(command.start * sample_rate)), int(round(command.end * sample_rate))


class TransformPipeline:
    """Replays edit commands over a raw artifact."""

    def __init__(
        self,
        store: ArtifactStore,
        settings: Optional[PipelineSettings] = None,
        tone_profiles: Optional[Dict[str, ToneProfile]] = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            store: Store holding raw, referenced and rendered artifacts
            settings: Parameter bounds and cache size
            tone_profiles: Registered voice tones (defaults to :data:`TONE_PROFILES`)
        """
        self._store = store
        self._settings = settings or PipelineSettings()
        self._tone_profiles = dict(tone_profiles if tone_profiles is not None else TONE_PROFILES)
        self._cache: "OrderedDict[str, ArtifactHandle]" = OrderedDict()
        self._cache_lock = threading.Lock()

    @property
    def store(self) -> ArtifactStore:
        return self._store

    @property
    def tone_profiles(self) -> Dict[str, ToneProfile]:
        return dict(self._tone_profiles)

    def cache_key(self, raw: ArtifactHandle, commands: Iterable[EditCommand]) -> str:
        digest = hashlib.sha256(raw.key.encode("utf-8"))
        for command in commands:
            digest.update(b"\n")
            digest.update(command.fingerprint().encode("utf-8"))
        return digest.hexdigest()

    def cached(self, raw: ArtifactHandle, commands: Iterable[EditCommand]) -> Optional[ArtifactHandle]:
        key = self.cache_key(raw, commands)
        with self._cache_lock:
            handle = self._cache.get(key)
            if handle is not None:
                self._cache.move_to_end(key)
            return handle

    def clear_cache(self) -> None:
        with self._cache_lock:
            evicted = list(self._cache.values())
            self._cache.clear()
        for handle in evicted:
            self._store.release(handle)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def check(self, raw: ArtifactHandle, commands: Iterable[EditCommand]) -> int:
        """Validate *commands* against *raw* without rendering.

        Returns:
            Sample count the rendered artifact will have

        Raises:
            ArtifactNotSealed: The raw artifact is still being captured
            CommandRejected: A command is invalid at its position in the chain
        """
        self._require_sealed(raw)
        info = self._store.info(raw)
        sample_count = info.sample_count
        for command in commands:
            sample_count = self._check_command(command, sample_count, info.format)
        return sample_count

    def _check_command(self, command: EditCommand, sample_count: int, audio_format: AudioFormat) -> int:
        if command.kind is CommandKind.TRIM:
            if not (math.isfinite(command.start) and math.isfinite(command.end)):
                raise InvalidRange(f"Trim bounds must be finite, got {command.start}s..{command.end}s")
            start, end = trim_bounds(command, audio_format.sample_rate)
            if command.start < 0 or command.start >= command.end or start >= end:
                raise InvalidRange(f"Trim start {command.start}s must be >= 0 and before end {command.end}s")
            if end > sample_count:
                duration = sample_count / audio_format.sample_rate
                raise InvalidRange(f"Trim end {command.end}s exceeds audio duration {duration:.3f}s")
            return end - start

        if command.kind is CommandKind.PITCH_SHIFT:
            settings = self._settings
            if not settings.pitch_min <= command.ratio <= settings.pitch_max:
                raise ParameterOutOfRange(
                    f"Pitch ratio {command.ratio} outside {settings.pitch_min}..{settings.pitch_max}"
                )
            fraction = pitch_fraction(command.ratio)
            if sample_count == 0:
                return 0
            return -(-sample_count * fraction.denominator // fraction.numerator)

        if command.kind is CommandKind.TONE_CHANGE:
            self._profile(command)
            return sample_count

        if command.kind is CommandKind.MIX:
            if not 0.0 <= command.gain <= self._settings.mix_gain_max:
                raise ParameterOutOfRange(
                    f"Mix gain {command.gain} outside 0..{self._settings.mix_gain_max}"
                )
            if not self._store.resolves(command.reference):
                raise MissingReference(f"Mix reference {command.reference.key} does not resolve")
            return sample_count

        return sample_count

    def _profile(self, command: ToneChange) -> ToneProfile:
        try:
            return self._tone_profiles[command.profile]
        except KeyError:
            raise UnknownProfile(
                f"Unknown tone profile '{command.profile}' "
                f"(available: {', '.join(sorted(self._tone_profiles))})"
            ) from None

    def _require_sealed(self, handle: ArtifactHandle) -> None:
        if not handle.sealed:
            raise ArtifactNotSealed(f"Artifact {handle.key} must be sealed before editing")

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def render(
        self,
        raw: ArtifactHandle,
        commands: Iterable[EditCommand],
        token: Optional[CancelToken] = None,
    ) -> ArtifactHandle:
        """Replay *commands* over *raw* and return the rendered artifact.

        Raises:
            RecomputeCancelled: *token* was cancelled before the run finished
            CommandRejected: A command is invalid (for example a mix
                reference released since it was recorded)
        """
        commands = list(commands)
        token = token or CancelToken()
        self._require_sealed(raw)
        if not commands:
            return raw

        cached = self.cached(raw, commands)
        if cached is not None:
            logger.debug(f"Pipeline cache hit for {len(commands)} command(s)")
            return cached

        token.raise_if_cancelled()
        self.check(raw, commands)
        info = self._store.info(raw)
        audio_format = info.format
        audio = decode(self._store.read(raw), audio_format)

        for position, command in enumerate(commands):
            token.raise_if_cancelled()
            audio = self._apply(command, audio, audio_format)
            logger.debug(f"Stage {position + 1}/{len(commands)}: {command.describe()} -> {audio.shape[0]} samples")

        token.raise_if_cancelled()
        handle = self._store.put(encode(audio), audio_format)
        self._remember(self.cache_key(raw, commands), handle)
        logger.info(f"Rendered {len(commands)} edit(s) over {raw.key[:12]} -> {handle.key[:12]}")
        return handle

    def _apply(self, command: EditCommand, audio: np.ndarray, audio_format: AudioFormat) -> np.ndarray:
        if command.kind is CommandKind.TRIM:
            start, end = trim_bounds(command, audio_format.sample_rate)
            return audio[start:end].copy()

        if command.kind is CommandKind.PITCH_SHIFT:
            fraction = pitch_fraction(command.ratio)
            return resample(audio, fraction.denominator, fraction.numerator)

        if command.kind is CommandKind.TONE_CHANGE:
            return apply_tone(audio, audio_format.sample_rate, self._profile(command))

        if command.kind is CommandKind.NOISE_REDUCTION:
            return reduce_noise(audio, audio_format.sample_rate)

        if command.kind is CommandKind.MIX:
            return self._mix(command, audio, audio_format)

        raise ValueError(f"Unsupported command kind: {command.kind}")

    def _mix(self, command: Mix, audio: np.ndarray, audio_format: AudioFormat) -> np.ndarray:
        if not self._store.resolves(command.reference):
            raise MissingReference(f"Mix reference {command.reference.key} does not resolve")
        secondary_info = self._store.info(command.reference)
        secondary = decode(self._store.read(command.reference), secondary_info.format)
        secondary = conform_channels(secondary, audio_format.channels)
        if secondary_info.format.sample_rate != audio_format.sample_rate:
            secondary = resample(secondary, audio_format.sample_rate, secondary_info.format.sample_rate)
        return mix_buffers(audio, secondary, command.gain)

    def _remember(self, key: str, handle: ArtifactHandle) -> None:
        evicted: List[ArtifactHandle] = []
        with self._cache_lock:
            if key in self._cache:
                # rendered concurrently; keep the first entry, drop our extra reference
                evicted.append(handle)
            else:
                self._cache[key] = handle
            while len(self._cache) > self._settings.cache_size:
                _, old = self._cache.popitem(last=False)
                evicted.append(old)
        for old in evicted:
            self._store.release(old)

