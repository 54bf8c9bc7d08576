"""Per-project editing session.

A :class:`Project` binds one sealed raw capture to one edit history, one
script document and one transform pipeline.

- ``apply``, ``undo`` and ``redo`` are serialized by a lock.
- A command is validated against the would-be active list before the history
  changes, so a rejected command leaves the history exactly as it was.
- Every mutation cancels the recomputation in flight and schedules a new one
  on a single worker thread.  :meth:`Project.current_artifact` waits for the
  newest one, skipping runs that were superseded.
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional

from loguru import logger

from .edits import EditCommand, coalesces
from .errors import ArtifactNotSealed, RecomputeCancelled
from .history import CommandSequence, EditHistory
from .log import SessionJournal
from .pipeline import CancelToken, TransformPipeline
from .script import ScriptDocument
from .storage import ArtifactHandle, ArtifactStore


class _Recompute:
    """One scheduled pipeline run."""

    def __init__(self, version: int, token: CancelToken, future: "Future[ArtifactHandle]") -> None:
        self.version = version
        self.token = token
        self.future = future


class Project:
    """Editing session over one raw capture."""

    def __init__(
        self,
        store: ArtifactStore,
        raw: ArtifactHandle,
        pipeline: Optional[TransformPipeline] = None,
        journal: Optional[SessionJournal] = None,
        script: str = "",
    ) -> None:
        """Initialize the project.

        Args:
            store: Store holding the raw capture and rendered artifacts
            raw: Sealed raw capture
            pipeline: Transform pipeline (a default one over *store* if omitted)
            journal: Optional JSONL journal receiving every history mutation
            script: Initial script text

        Raises:
            ArtifactNotSealed: *raw* is still being captured
        """
        if not raw.sealed:
            raise ArtifactNotSealed(f"Artifact {raw.key} must be sealed before editing")
        store.info(raw)
        self._store = store
        self._raw = raw
        self._pipeline = pipeline or TransformPipeline(store)
        self._journal = journal
        self.history: EditHistory[EditCommand] = EditHistory(coalesce=coalesces)
        self.script = ScriptDocument(script)

        self._lock = threading.RLock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="recompute")
        self._job: Optional[_Recompute] = None

    @property
    def raw(self) -> ArtifactHandle:
        return self._raw

    @property
    def pipeline(self) -> TransformPipeline:
        return self._pipeline

    @property
    def is_stale(self) -> bool:
        return self.history.stale

    def current_commands(self) -> CommandSequence[EditCommand]:
        with self._lock:
            return self.history.current_commands()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def apply(self, command: EditCommand) -> bool:
        """Validate and record *command*.

        Returns:
            ``False`` when the command coalesced with the last one (no change)

        Raises:
            CommandRejected: The command is invalid; the history is unchanged
        """
        with self._lock:
            active = list(self.history.current_commands())
            if active and coalesces(active[-1], command):
                logger.debug(f"Coalesced repeated {command.kind.value}")
                return False
            self._pipeline.check(self._raw, active + [command])
            self.history.apply(command)
            self._journal_edit("apply", self.history.entries()[-1].ordinal, command)
            self._schedule()
        logger.info(f"Applied {command.describe()}")
        return True

    def undo(self) -> EditCommand:
        """Undo the last command.

        Raises:
            NothingToUndo: The history is empty
        """
        with self._lock:
            ordinal = self.history.entries()[-1].ordinal if self.history.can_undo else None
            command = self.history.undo()
            self._journal_edit("undo", ordinal, command)
            self._schedule()
        logger.info(f"Undid {command.describe()}")
        return command

    def redo(self) -> EditCommand:
        """Re-apply the most recently undone command.

        Raises:
            NothingToRedo: The redo buffer is empty
            CommandRejected: The command no longer validates (for example its
                mix reference was released); it stays in the redo buffer
        """
        with self._lock:
            command = self.history.peek_redo()
            self._pipeline.check(self._raw, list(self.history.current_commands()) + [command])
            self.history.redo()
            self._journal_edit("redo", self.history.entries()[-1].ordinal, command)
            self._schedule()
        logger.info(f"Redid {command.describe()}")
        return command

    # ------------------------------------------------------------------
    # Recomputation
    # ------------------------------------------------------------------

    def _schedule(self) -> _Recompute:
        if self._job is not None and not self._job.future.done():
            self._job.token.cancel()
        commands = tuple(self.history.current_commands())
        token = CancelToken()
        future = self._executor.submit(self._pipeline.render, self._raw, commands, token)
        self._job = _Recompute(self.history.version, token, future)
        return self._job

    def current_artifact(self, timeout: Optional[float] = None) -> ArtifactHandle:
        """Return the artifact for the active commands, waiting for recomputation.

        The handle is owned by the pipeline cache and is released once
        ``cache_size`` newer renders have been cached.  Callers that keep it
        longer must ``store.retain(handle)`` and release it when done.

        Raises:
            CommandRejected: Replay failed (for example a released mix reference)
            concurrent.futures.TimeoutError: *timeout* elapsed
        """
        while True:
            with self._lock:
                job = self._job
                if job is None or job.version != self.history.version:
                    job = self._schedule()
            try:
                handle = job.future.result(timeout)
            except RecomputeCancelled:
                logger.debug(f"Recompute for version {job.version} superseded")
                continue
            with self._lock:
                if job.version == self.history.version:
                    self.history.mark_fresh(job.version)
                    return handle

    def close(self) -> None:
        """Cancel pending work and stop the worker thread."""
        with self._lock:
            if self._job is not None:
                self._job.token.cancel()
        self._executor.shutdown(wait=True)

    def __enter__(self) -> "Project":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _journal_edit(self, action: str, ordinal: Optional[int], command: EditCommand) -> None:
        if self._journal is None:
            return
        self._journal.write_edit(
            project_id=self._raw.key,
            action=action,
            ordinal=ordinal,
            command={"kind": command.kind.value, **command.params()},
        )
