"""Command-line interface for PawnAI Studio."""

from .commands import app

__all__ = ["app"]
