"""Error taxonomy for PawnAI Studio.

All engine errors derive from :class:`StudioError` so that outer surfaces
(the CLI, an embedding application) can catch one type and render a message.

Severity
--------
``CaptureError``
    Device, permission and integrity failures.  They move the recording
    session to ``Failed``; partial audio is preserved.

``InvalidTransition``
    A state-machine method was called in a state that does not allow it.
    This is a programming error and is raised immediately.

``HistoryError``
    Nothing to undo / redo.  Recoverable, the history is untouched.

``CommandRejected``
    A command failed validation.  The history is left exactly as it was.

``RecomputeCancelled``
    A pipeline run was superseded by a newer mutation.  Expected, never shown
    to the user.
"""


class StudioError(Exception):
    """Base class for every error raised by the engine."""


class CaptureError(StudioError):
    """Audio capture could not start or continue."""


class DeviceUnavailable(CaptureError):
    """The frame source cannot supply frames."""


class PermissionDenied(CaptureError):
    """The operating system refused access to the input device."""


class CaptureIntegrityError(CaptureError):
    """A delivered frame would corrupt the replayable capture."""


class FrameSequenceViolation(CaptureIntegrityError):
    """A frame arrived out of order or duplicated."""

    def __init__(self, previous: int, received: int) -> None:
        super().__init__(
            f"Frame sequence violation: received {received} after {previous}"
        )
        self.previous = previous
        self.received = received


class FrameFormatMismatch(CaptureIntegrityError):
    """A frame does not match the sample rate or channel count of the session."""


class InvalidTransition(StudioError):
    """A recording state transition is not allowed from the current state."""

    def __init__(self, action: str, state: object) -> None:
        super().__init__(f"Cannot {action}() while {state}")
        self.action = action
        self.state = state


class HistoryError(StudioError):
    """Undo or redo requested with nothing to act on."""


class NothingToUndo(HistoryError):
    """The applied sequence is empty."""


class NothingToRedo(HistoryError):
    """The redo buffer is empty."""


class CommandRejected(StudioError):
    """An edit command failed validation and was not recorded."""


class InvalidRange(CommandRejected):
    """A range is empty, negative or exceeds the audio duration."""


class ParameterOutOfRange(CommandRejected):
    """A numeric command parameter is outside its allowed bounds."""


class UnknownProfile(CommandRejected):
    """A tone profile identifier is not registered."""


class MissingReference(CommandRejected):
    """A referenced artifact no longer resolves in the store."""


class RecomputeCancelled(StudioError):
    """A pipeline run was cancelled because a newer mutation superseded it."""


class ArtifactError(StudioError):
    """Artifact store contract violation."""


class ArtifactNotFound(ArtifactError):
    """The handle does not resolve to a stored artifact."""


class ArtifactNotSealed(ArtifactError):
    """The artifact is still being written and cannot be read yet."""


class ArtifactSealed(ArtifactError):
    """The artifact is immutable and cannot be appended to."""
