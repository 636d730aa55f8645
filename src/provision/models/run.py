"""Run model: one traversal of a step graph."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from .outcome import StepOutcome, StepState


class RunState(str, Enum):
    """Overall state of a run."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ABORTED = "aborted"

    @property
    def is_final(self) -> bool:
        return self != RunState.IN_PROGRESS


class Run(BaseModel):
    """Persisted run written to runs/<run_id>/run.json.

    Attributes:
        run_id: Unique run identifier (format: YYYYMMDD-HHMMSS-slug).
        recipe: Name of the recipe (step graph) the run executes.
        state: Overall run state.
        outcomes: Step outcomes in execution order.
        created_at: Timestamp when the run was created.
        updated_at: Timestamp of the last modification.
        resumed_from: Run ID whose progress this run carried over.
    """

    run_id: str = Field(description="Unique run identifier")
    recipe: str = Field(default="custom", description="Recipe executed by this run")
    state: RunState = Field(default=RunState.IN_PROGRESS, description="Overall run state")
    outcomes: list[StepOutcome] = Field(default_factory=list, description="Step outcomes")
    created_at: datetime = Field(default_factory=datetime.now, description="Run creation time")
    updated_at: datetime = Field(default_factory=datetime.now, description="Last modification")
    resumed_from: str | None = Field(default=None, description="Run carried over from")

    def outcome(self, step: str) -> StepOutcome | None:
        """Return the outcome for a step, or None if the run has no record of it."""
        for outcome in self.outcomes:
            if outcome.step == step:
                return outcome
        return None

    def put(self, outcome: StepOutcome) -> None:
        """Replace the outcome for ``outcome.step`` or append it."""
        for i, existing in enumerate(self.outcomes):
            if existing.step == outcome.step:
                self.outcomes[i] = outcome
                break
        else:
            self.outcomes.append(outcome)
        self.updated_at = datetime.now()

    def last_seq(self) -> int:
        return max((o.seq for o in self.outcomes), default=0)

    def failed_steps(self) -> list[StepOutcome]:
        return [o for o in self.outcomes if o.state == StepState.FAILED]

    def count(self, state: StepState) -> int:
        return sum(1 for o in self.outcomes if o.state == state)
