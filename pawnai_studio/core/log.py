"""JSONL journal of capture sessions and edit history changes.

Every line in the journal is one self-contained JSON object with a ``type``
key. Captures produce a ``session`` pair (``event`` is ``start`` or ``end``),
projects produce one ``edit`` line per ``apply``/``undo``/``redo`` and the CLI
adds an ``export`` line whenever an artifact is written out to a file::

    {"type": "session", "event": "start", "session_id": "261018143022", "sample_rate": 44100, "channels": 1, "started_at": "2026-10-18T14:30:22"}
    {"type": "edit", "project_id": "9c1e...", "action": "apply", "ordinal": 0, "command": {"kind": "trim", "start": 0.5, "end": 2.5}, "at": "2026-10-18T14:31:02"}

Replaying the ``edit`` lines of one ``project_id`` in order reproduces the
project's command sequence.
"""

import json
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional


def _timestamp(when: Optional[datetime] = None) -> str:
    return (when or datetime.now()).replace(microsecond=0).isoformat()


def _entry(kind: str, **fields: Any) -> Dict[str, Any]:
    entry: Dict[str, Any] = {"type": kind}
    entry.update(fields)
    return entry


class SessionJournal:
    """Append-only JSONL journal shared by recorders and projects.

    Writes are serialised with a lock so the capture writer thread and a
    project's recompute worker can log to the same file.

    Args:
        log_path: Journal location. Missing parent directories are created.
    """

    def __init__(self, log_path: Path) -> None:
        self._path = Path(log_path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def write_session_start(
        self,
        session_id: str,
        sample_rate: int,
        channels: int,
        started_at: Optional[datetime] = None,
    ) -> None:
        """Record that a capture session began with the given format."""
        self._append(_entry(
            "session",
            event="start",
            session_id=session_id,
            sample_rate=sample_rate,
            channels=channels,
            started_at=_timestamp(started_at),
        ))

    def write_session_end(
        self,
        session_id: str,
        state: str,
        total_duration_sec: float = 0.0,
        frame_count: int = 0,
        artifact_key: Optional[str] = None,
        error: Optional[str] = None,
        ended_at: Optional[datetime] = None,
    ) -> None:
        """Record how a capture session finished.

        Args:
            session_id: Identifier used by the matching start line.
            state: Final recorder state, ``stopped`` or ``failed``.
            total_duration_sec: Seconds of audio appended to the capture.
            frame_count: Number of frames accepted.
            artifact_key: Sealed capture key, or ``None`` if it was discarded.
            error: Failure message, if any.
            ended_at: Defaults to now.
        """
        self._append(_entry(
            "session",
            event="end",
            session_id=session_id,
            state=state,
            ended_at=_timestamp(ended_at),
            total_duration_sec=round(total_duration_sec, 3),
            frame_count=frame_count,
            artifact_key=artifact_key,
            error=error,
        ))

    def write_edit(
        self,
        project_id: str,
        action: str,
        ordinal: Optional[int],
        command: Dict[str, Any],
    ) -> None:
        """Record one edit history mutation of the project on ``project_id``."""
        self._append(_entry(
            "edit",
            project_id=project_id,
            action=action,
            ordinal=ordinal,
            command=command,
            at=_timestamp(),
        ))

    def write_export(self, artifact_key: str, file_path: str, duration_sec: float) -> None:
        self._append(_entry(
            "export",
            artifact_key=artifact_key,
            file_path=file_path,
            duration_sec=round(duration_sec, 3),
            at=_timestamp(),
        ))

    def _append(self, entry: Dict[str, Any]) -> None:
        line = json.dumps(entry, ensure_ascii=False)
        with self._lock, self._path.open("a", encoding="utf-8") as journal_file:
            journal_file.write(line + "\n")
