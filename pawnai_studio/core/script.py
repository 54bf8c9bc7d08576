"""Script text editing on top of the generic edit history."""

from dataclasses import dataclass

from .errors import InvalidRange
from .history import EditHistory


@dataclass(frozen=True)
class ScriptEdit:
    """Replace ``removed`` at ``position`` with ``inserted``.

    The edit carries both directions: :meth:`forward` applies it and
    :meth:`backward` reverts it.
    """

    position: int
    removed: str
    inserted: str

    def forward(self, text: str) -> str:
        end = self.position + len(self.removed)
        return text[:self.position] + self.inserted + text[end:]

    def backward(self, text: str) -> str:
        end = self.position + len(self.inserted)
        return text[:self.position] + self.removed + text[end:]


class ScriptDocument:
    """Editable script text with undo/redo."""

    def __init__(self, text: str = "") -> None:
        self._text = text
        self.history: EditHistory[ScriptEdit] = EditHistory()

    @property
    def text(self) -> str:
        return self._text

    def insert(self, position: int, text: str) -> ScriptEdit:
        return self.replace(position, 0, text)

    def delete(self, position: int, length: int) -> ScriptEdit:
        return self.replace(position, length, "")

    def replace(self, position: int, length: int, text: str) -> ScriptEdit:
        """Replace *length* characters at *position* with *text*.

        Raises:
            InvalidRange: The span falls outside the current text
        """
        if position < 0 or length < 0 or position + length > len(self._text):
            raise InvalidRange(
                f"Span {position}..{position + length} outside script of length {len(self._text)}"
            )
        edit = ScriptEdit(position, self._text[position:position + length], text)
        self._text = edit.forward(self._text)
        self.history.apply(edit)
        return edit

    def undo(self) -> ScriptEdit:
        edit = self.history.undo()
        self._text = edit.backward(self._text)
        return edit

    def redo(self) -> ScriptEdit:
        edit = self.history.redo()
        self._text = edit.forward(self._text)
        return edit
