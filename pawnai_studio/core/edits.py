"""Edit commands for captured audio.

Each command is an immutable value object.  Its :meth:`~EditCommand.params`
and :meth:`~EditCommand.fingerprint` give a canonical description used for
cache keys and the session journal; validation against bounds and the
artifact store happens in the transform pipeline.

Edit lists can be written as plain mappings (for example in YAML)::

    - trim: {start: 0.5, end: 2.5}
    - pitch_shift: {ratio: 1.25}
    - tone_change: {profile: warm}
    - noise_reduction: {}
    - mix: {artifact: 3f1c...e9, gain: 0.3}
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Dict, Iterable, List, Mapping

from .storage import ArtifactHandle


class CommandKind(str, Enum):
    TRIM = "trim"
    PITCH_SHIFT = "pitch_shift"
    TONE_CHANGE = "tone_change"
    NOISE_REDUCTION = "noise_reduction"
    MIX = "mix"


@dataclass(frozen=True)
class EditCommand:
    """Base class of reversible audio operations."""

    kind: ClassVar[CommandKind]

    def params(self) -> Dict[str, Any]:
        return {}

    def fingerprint(self) -> str:
        """Canonical JSON form of the command."""
        return json.dumps({"kind": self.kind.value, **self.params()}, sort_keys=True)

    def describe(self) -> str:
        details = ", ".join(f"{key}={value}" for key, value in sorted(self.params().items()))
        return f"{self.kind.value}({details})"


@dataclass(frozen=True)
class Trim(EditCommand):
    """Keep audio between ``start`` and ``end`` seconds."""

    kind: ClassVar[CommandKind] = CommandKind.TRIM
    start: float
    end: float

    def params(self) -> Dict[str, Any]:
        return {"start": float(self.start), "end": float(self.end)}


@dataclass(frozen=True)
class PitchShift(EditCommand):
    """Resample by ``ratio`` (above 1 raises pitch and shortens audio)."""

    kind: ClassVar[CommandKind] = CommandKind.PITCH_SHIFT
    ratio: float

    def params(self) -> Dict[str, Any]:
        return {"ratio": float(self.ratio)}


@dataclass(frozen=True)
class ToneChange(EditCommand):
    kind: ClassVar[CommandKind] = CommandKind.TONE_CHANGE
    profile: str

    def params(self) -> Dict[str, Any]:
        return {"profile": self.profile}


@dataclass(frozen=True)
class NoiseReduction(EditCommand):
    kind: ClassVar[CommandKind] = CommandKind.NOISE_REDUCTION


@dataclass(frozen=True)
class Mix(EditCommand):
    """Lay a second artifact under the current audio at ``gain``."""

    kind: ClassVar[CommandKind] = CommandKind.MIX
    reference: ArtifactHandle
    gain: float = 1.0

    def params(self) -> Dict[str, Any]:
        return {"artifact": self.reference.key, "gain": float(self.gain)}


def coalesces(previous: EditCommand, command: EditCommand) -> bool:
    """Whether *command* is a no-op on top of *previous*."""
    return previous.kind is CommandKind.NOISE_REDUCTION and command.kind is CommandKind.NOISE_REDUCTION


def command_from_dict(entry: Mapping[str, Any]) -> EditCommand:
    """Build a command from a single-key mapping ``{kind: {params}}``.

    Raises:
        ValueError: If the entry is malformed or names an unknown kind
    """
    if not isinstance(entry, Mapping) or len(entry) != 1:
        raise ValueError(f"Edit entry must be a mapping with exactly one key, got {entry!r}")
    (name, params), = entry.items()
    params = dict(params or {})
    try:
        kind = CommandKind(name)
    except ValueError:
        raise ValueError(f"Unknown edit kind: {name}") from None

    try:
        if kind is CommandKind.TRIM:
            return Trim(start=float(params["start"]), end=float(params["end"]))
        if kind is CommandKind.PITCH_SHIFT:
            return PitchShift(ratio=float(params["ratio"]))
        if kind is CommandKind.TONE_CHANGE:
            return ToneChange(profile=str(params["profile"]))
        if kind is CommandKind.NOISE_REDUCTION:
            return NoiseReduction()
        return Mix(
            reference=ArtifactHandle(str(params["artifact"]), sealed=True),
            gain=float(params.get("gain", 1.0)),
        )
    except KeyError as error:
        raise ValueError(f"Edit '{name}' is missing parameter {error}") from None


def commands_from_list(entries: Iterable[Mapping[str, Any]]) -> List[EditCommand]:
    return [command_from_dict(entry) for entry in entries]
