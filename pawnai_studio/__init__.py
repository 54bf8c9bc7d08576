"""PawnAI Studio - audio capture and non-destructive editing.

This package provides a recording state machine with live amplitude
visualization, a reversible edit history and a deterministic transform
pipeline, plus a command-line front end.
"""

from .cli.commands import app

__version__ = "1.0.0"
__author__ = "PawnAI Team"

__all__ = ["app", "__version__"]
