"""Durable per-run progress.

Each run lives in ``runs/<run_id>/``:

- ``run.json`` is the full snapshot. It is replaced atomically (write to a
  temporary file in the same directory, fsync, rename) so a crash never
  leaves a half-written snapshot.
- ``journal.jsonl`` receives one StepOutcome per line between snapshots.
  Lines are fsynced as they are written; on load a torn trailing line is
  ignored, so a reader never sees a partially flushed transition.

Loading replays journal entries over the snapshot, keeping for each step
the record with the highest write sequence.
"""

import os
import tempfile
from pathlib import Path

from ..errors import ProgressStoreError, RunFinalizedError
from ..logging import get_logger
from ..models import Run, RunState, StepOutcome
from .run_manager import get_log_path, get_run_dir, list_runs

SNAPSHOT_FILE = "run.json"
JOURNAL_FILE = "journal.jsonl"

log = get_logger("store")


def _fsync_dir(path: Path) -> None:
    """Persist a rename on filesystems that need the directory synced."""
    if os.name != "posix":
        return
    fd = os.open(path, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


class ProgressStore:
    """File-backed run persistence rooted at a state directory."""

    def __init__(self, state_dir: Path) -> None:
        self.state_dir = state_dir

    def run_dir(self, run_id: str) -> Path:
        return get_run_dir(self.state_dir, run_id)

    def log_path(self, run_id: str) -> Path:
        return get_log_path(self.state_dir, run_id)

    def _snapshot_path(self, run_id: str) -> Path:
        return self.run_dir(run_id) / SNAPSHOT_FILE

    def _journal_path(self, run_id: str) -> Path:
        return self.run_dir(run_id) / JOURNAL_FILE

    def _read_snapshot(self, run_id: str) -> Run | None:
        path = self._snapshot_path(run_id)
        if not path.exists():
            return None
        try:
            return Run.model_validate_json(path.read_text())
        except ValueError as e:
            raise ProgressStoreError(f"Corrupted run snapshot {path}: {e}") from e

    def _ensure_writable(self, run_id: str) -> None:
        stored = self._read_snapshot(run_id)
        if stored is not None and stored.state.is_final:
            raise RunFinalizedError(f"Run {run_id} is already {stored.state.value}")

    def load(self, run_id: str) -> Run | None:
        """Load a run, replaying journaled outcomes over the snapshot.

        Returns:
            The run, or None if no snapshot exists
        """
        run = self._read_snapshot(run_id)
        if run is None:
            return None

        journal = self._journal_path(run_id)
        if not journal.exists():
            return run

        with open(journal, encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    outcome = StepOutcome.model_validate_json(line)
                except ValueError:
                    log.warning("Ignoring torn journal entry %s:%d", journal, lineno)
                    break
                current = run.outcome(outcome.step)
                if current is None or outcome.seq > current.seq:
                    run.put(outcome)
        return run

    def save(self, run: Run) -> None:
        """Atomically replace the snapshot of a run and reset its journal.

        Raises:
            RunFinalizedError: If the stored run is already completed or aborted
        """
        self._ensure_writable(run.run_id)
        run_dir = self.run_dir(run.run_id)
        run_dir.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(prefix=".run-", suffix=".json", dir=run_dir)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(run.model_dump_json(indent=2))
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self._snapshot_path(run.run_id))
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        _fsync_dir(run_dir)

        # Entries already folded into the snapshot; seq ordering makes a
        # crash between the rename and this truncation harmless.
        self._journal_path(run.run_id).write_text("", encoding="utf-8")

    def append_outcome(self, run_id: str, outcome: StepOutcome) -> None:
        """Durably append one step transition to the run's journal.

        Raises:
            RunFinalizedError: If the stored run is already completed or aborted
        """
        self._ensure_writable(run_id)
        journal = self._journal_path(run_id)
        journal.parent.mkdir(parents=True, exist_ok=True)
        with open(journal, "a", encoding="utf-8") as f:
            f.write(outcome.model_dump_json() + "\n")
            f.flush()
            os.fsync(f.fileno())

    def list_runs(self) -> list[str]:
        """List run IDs, newest first."""
        return [r for r in list_runs(self.state_dir) if self._snapshot_path(r).exists()]

    def latest(self, state: RunState | None = None, recipe: str | None = None) -> Run | None:
        """Return the newest run, optionally filtered by state and recipe."""
        for run_id in self.list_runs():
            run = self.load(run_id)
            if run is None:
                continue
            if state is not None and run.state != state:
                continue
            if recipe is not None and run.recipe != recipe:
                continue
            return run
        return None
