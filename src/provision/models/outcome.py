"""Step outcome model.

One record per (run, step). Records are immutable: every state transition
produces a new record, which the progress store persists before the next
transition happens.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class StepState(str, Enum):
    """Lifecycle state of a step within a run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (StepState.SUCCEEDED, StepState.FAILED, StepState.SKIPPED)


class SkipReason(str, Enum):
    """Why a step was skipped."""

    SATISFIED = "satisfied"  # idempotency check reported the work as done
    BLOCKED = "blocked"  # an upstream dependency failed


class ErrorKind(str, Enum):
    """Classification of a failed attempt."""

    TRANSIENT = "transient"
    FATAL = "fatal"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


class ErrorInfo(BaseModel):
    """Structured summary of the last failed attempt of a step.

    Attributes:
        kind: Failure classification.
        message: Human-readable description.
        attempt: Attempt number (1-indexed) that produced the error.
        exit_code: Exit code of the failing command, if any.
        stderr_tail: Last lines of the failing command's stderr.
        log_path: Path to the full run log.
    """

    model_config = ConfigDict(frozen=True)

    kind: ErrorKind = Field(description="Failure classification")
    message: str = Field(description="Human-readable description")
    attempt: int = Field(default=0, description="Attempt that produced the error")
    exit_code: int | None = Field(default=None, description="Exit code of failing command")
    stderr_tail: str = Field(default="", description="Last lines of stderr")
    log_path: str | None = Field(default=None, description="Path to the full run log")


class StepOutcome(BaseModel):
    """Outcome of one step within one run.

    Attributes:
        step: Step name.
        state: Current lifecycle state.
        attempts: Number of action attempts made so far.
        started_at: When the step left pending.
        ended_at: When the step reached a terminal state.
        skip_reason: Set when state is skipped.
        last_error: Last failure, if any.
        seq: Monotonic write sequence, used to order journal entries.
    """

    model_config = ConfigDict(frozen=True)

    step: str = Field(description="Step name")
    state: StepState = Field(default=StepState.PENDING, description="Lifecycle state")
    attempts: int = Field(default=0, description="Action attempts made")
    started_at: datetime | None = Field(default=None, description="When execution began")
    ended_at: datetime | None = Field(default=None, description="When a terminal state was hit")
    skip_reason: SkipReason | None = Field(default=None, description="Why the step was skipped")
    last_error: ErrorInfo | None = Field(default=None, description="Last failure")
    seq: int = Field(default=0, description="Write sequence number")

    @property
    def resolved(self) -> bool:
        """True if downstream steps may run (succeeded, or already satisfied)."""
        return self.state == StepState.SUCCEEDED or (
            self.state == StepState.SKIPPED and self.skip_reason == SkipReason.SATISFIED
        )

    @property
    def blocks_dependents(self) -> bool:
        """True if downstream steps must be skipped as blocked."""
        return self.state == StepState.FAILED or (
            self.state == StepState.SKIPPED and self.skip_reason == SkipReason.BLOCKED
        )
