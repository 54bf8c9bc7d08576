"""Generic reversible command history.

:class:`EditHistory` is shared by audio editing and script editing.  It keeps
the applied commands and a redo buffer, and knows nothing about what the
commands do: callers interpret them (the transform pipeline replays audio
commands, :class:`~pawnai_studio.core.script.ScriptDocument` applies text
deltas).

Applying a new command after an undo discards the redo buffer.  An optional
``coalesce(previous, new)`` predicate lets a caller declare that a command
repeated on top of itself changes nothing, in which case ``apply`` is a
no-op.

The history is not synchronized; the owning project serializes mutations.
"""

from dataclasses import dataclass
from typing import Callable, Generic, Iterator, List, Optional, Tuple, TypeVar

from .errors import NothingToRedo, NothingToUndo

T = TypeVar("T")


@dataclass(frozen=True)
class HistoryEntry(Generic[T]):
    """A recorded command with the ordinal it received when first applied."""

    ordinal: int
    command: T


class CommandSequence(Generic[T]):
    """Snapshot of active commands.

    Iteration is lazy and can be repeated; every pass yields the same
    commands in the same order.
    """

    def __init__(self, entries: Tuple[HistoryEntry[T], ...]) -> None:
        self._entries = entries

    def __iter__(self) -> Iterator[T]:
        return (entry.command for entry in self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CommandSequence):
            return NotImplemented
        return self._entries == other._entries

    def __repr__(self) -> str:
        return f"CommandSequence({list(self)!r})"

    @property
    def entries(self) -> Tuple[HistoryEntry[T], ...]:
        return self._entries


class EditHistory(Generic[T]):
    """Ordered log of applied commands with branch-discarding redo."""

    def __init__(self, coalesce: Optional[Callable[[T, T], bool]] = None) -> None:
        self._applied: List[HistoryEntry[T]] = []
        self._redo: List[HistoryEntry[T]] = []
        self._coalesce = coalesce
        self._next_ordinal = 0
        self._version = 0
        self._fresh_version = 0

    def __len__(self) -> int:
        return len(self._applied)

    @property
    def version(self) -> int:
        """Incremented on every mutation."""
        return self._version

    @property
    def stale(self) -> bool:
        """Whether the derived artifact must be recomputed."""
        return self._fresh_version != self._version

    @property
    def can_undo(self) -> bool:
        return bool(self._applied)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo)

    @property
    def redo_buffer(self) -> Tuple[T, ...]:
        """Undone commands, most recently undone last."""
        return tuple(entry.command for entry in self._redo)

    def mark_fresh(self, version: Optional[int] = None) -> None:
        """Record that the artifact for *version* (default: current) is computed."""
        if version is None or version == self._version:
            self._fresh_version = self._version

    def entries(self) -> Tuple[HistoryEntry[T], ...]:
        return tuple(self._applied)

    def current_commands(self) -> CommandSequence[T]:
        """Return the active commands in application order."""
        return CommandSequence(tuple(self._applied))

    def apply(self, command: T) -> bool:
        """Record *command*.

        Returns:
            ``False`` if the command coalesced with the last applied one and
            nothing changed, ``True`` otherwise.
        """
        if self._coalesce is not None and self._applied:
            if self._coalesce(self._applied[-1].command, command):
                return False
        self._applied.append(HistoryEntry(self._next_ordinal, command))
        self._next_ordinal += 1
        self._redo.clear()
        self._touch()
        return True

    def undo(self) -> T:
        """Move the last applied command to the redo buffer and return it.

        Raises:
            NothingToUndo: No command has been applied
        """
        if not self._applied:
            raise NothingToUndo("Nothing to undo")
        entry = self._applied.pop()
        self._redo.append(entry)
        self._touch()
        return entry.command

    def peek_redo(self) -> T:
        """Return the command :meth:`redo` would re-apply, without applying it."""
        if not self._redo:
            raise NothingToRedo("Nothing to redo")
        return self._redo[-1].command

    def redo(self) -> T:
        """Re-apply the most recently undone command and return it.

        Raises:
            NothingToRedo: The redo buffer is empty
        """
        if not self._redo:
            raise NothingToRedo("Nothing to redo")
        entry = self._redo.pop()
        self._applied.append(entry)
        self._touch()
        return entry.command

    def clear(self) -> None:
        self._applied.clear()
        self._redo.clear()
        self._touch()

    def _touch(self) -> None:
        self._version += 1
