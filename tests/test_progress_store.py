"""Tests for the durable progress store."""

from datetime import datetime
from pathlib import Path
from unittest import mock

import pytest

from provision.core import ProgressStore, generate_run_id
from provision.core.progress_store import JOURNAL_FILE, SNAPSHOT_FILE
from provision.errors import ProgressStoreError, RunFinalizedError
from provision.models import Run, RunState, StepOutcome, StepState


def make_run(run_id: str = "20260101-000000-linux", recipe: str = "linux") -> Run:
    return Run(
        run_id=run_id,
        recipe=recipe,
        outcomes=[StepOutcome(step="a"), StepOutcome(step="b")],
    )


class TestSaveLoad:
    """Tests for snapshots."""

    def test_load_missing_returns_none(self, store: ProgressStore) -> None:
        assert store.load("nope") is None

    def test_round_trip(self, store: ProgressStore) -> None:
        run = make_run()
        store.save(run)
        loaded = store.load(run.run_id)
        assert loaded is not None
        assert loaded.model_dump() == run.model_dump()

    def test_no_temp_files_left(self, store: ProgressStore) -> None:
        run = make_run()
        store.save(run)
        names = {p.name for p in store.run_dir(run.run_id).iterdir()}
        assert names == {SNAPSHOT_FILE, JOURNAL_FILE}

    def test_corrupted_snapshot(self, store: ProgressStore) -> None:
        run_dir = store.run_dir("bad")
        run_dir.mkdir(parents=True)
        (run_dir / SNAPSHOT_FILE).write_text("{not json")
        with pytest.raises(ProgressStoreError, match="Corrupted"):
            store.load("bad")

    def test_finalized_run_is_immutable(self, store: ProgressStore) -> None:
        run = make_run()
        run.state = RunState.ABORTED
        store.save(run)
        with pytest.raises(RunFinalizedError):
            store.save(run)
        with pytest.raises(RunFinalizedError):
            store.append_outcome(run.run_id, StepOutcome(step="a", seq=1))


class TestJournal:
    """Tests for journaled step transitions."""

    def test_journal_replayed_over_snapshot(self, store: ProgressStore) -> None:
        run = make_run()
        store.save(run)
        store.append_outcome(run.run_id, StepOutcome(step="a", state=StepState.RUNNING, seq=1))
        store.append_outcome(run.run_id, StepOutcome(step="a", state=StepState.SUCCEEDED, seq=2))

        loaded = store.load(run.run_id)
        assert loaded.outcome("a").state == StepState.SUCCEEDED
        assert loaded.outcome("b").state == StepState.PENDING

    def test_lower_seq_does_not_override(self, store: ProgressStore) -> None:
        run = make_run()
        run.put(StepOutcome(step="a", state=StepState.SUCCEEDED, seq=5))
        store.save(run)
        store.append_outcome(run.run_id, StepOutcome(step="a", state=StepState.RUNNING, seq=3))
        assert store.load(run.run_id).outcome("a").state == StepState.SUCCEEDED

    def test_torn_trailing_line_ignored(self, store: ProgressStore) -> None:
        run = make_run()
        store.save(run)
        store.append_outcome(run.run_id, StepOutcome(step="a", state=StepState.SUCCEEDED, seq=1))
        journal = store.run_dir(run.run_id) / JOURNAL_FILE
        with open(journal, "a", encoding="utf-8") as f:
            f.write('{"step": "b", "state": "succ')

        loaded = store.load(run.run_id)
        assert loaded.outcome("a").state == StepState.SUCCEEDED
        assert loaded.outcome("b").state == StepState.PENDING

    def test_save_folds_journal(self, store: ProgressStore) -> None:
        run = make_run()
        store.save(run)
        store.append_outcome(run.run_id, StepOutcome(step="a", state=StepState.SUCCEEDED, seq=1))
        loaded = store.load(run.run_id)
        store.save(loaded)
        assert (store.run_dir(run.run_id) / JOURNAL_FILE).read_text() == ""
        assert store.load(run.run_id).outcome("a").state == StepState.SUCCEEDED


class TestListing:
    """Tests for run discovery."""

    def test_list_runs_newest_first(self, store: ProgressStore) -> None:
        for run_id in ("20260101-000000-linux", "20260102-000000-linux"):
            store.save(make_run(run_id))
        # Directories without a snapshot are not runs
        (store.state_dir / "runs" / "20260103-000000-linux").mkdir()
        assert store.list_runs() == ["20260102-000000-linux", "20260101-000000-linux"]

    def test_latest_filters_by_state(self, store: ProgressStore) -> None:
        aborted = make_run("20260102-000000-linux")
        aborted.state = RunState.ABORTED
        store.save(make_run("20260101-000000-linux"))
        store.save(aborted)

        assert store.latest().run_id == "20260102-000000-linux"
        assert store.latest(RunState.IN_PROGRESS).run_id == "20260101-000000-linux"
        assert store.latest(RunState.COMPLETED) is None
        assert store.latest(recipe="windows") is None

    def test_log_path(self, store: ProgressStore, state_dir: Path) -> None:
        assert store.log_path("r1") == state_dir / "logs" / "r1.log"

    def test_same_second_ids_sort_after_their_base(self, store: ProgressStore) -> None:
        with mock.patch("provision.core.run_manager.datetime") as clock:
            clock.now.return_value = datetime(2026, 1, 1)
            for _ in range(3):
                run_id = generate_run_id("linux", taken=lambda rid: store.run_dir(rid).exists())
                store.save(make_run(run_id))
        assert store.list_runs() == [
            "20260101-000000-linux-3",
            "20260101-000000-linux-2",
            "20260101-000000-linux",
        ]
