"""Error taxonomy for provision.

Definition errors are raised while building a step graph, before anything
executes. Execution errors describe why a single step attempt failed; the
orchestrator records them on the step outcome instead of propagating them.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .models.outcome import ErrorKind

if TYPE_CHECKING:
    from .models.command import CommandResult


class ProvisionError(Exception):
    """Base exception for provision errors."""


# ---------------------------------------------------------------------------
# Definition-time errors
# ---------------------------------------------------------------------------


class DefinitionError(ProvisionError):
    """Step graph is malformed. Always fatal, never retried."""


class DuplicateStepError(DefinitionError):
    """A step with the same name is already registered."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Step already registered: {name}")
        self.name = name


class UnknownDependencyError(DefinitionError):
    """A step depends on a name that is not registered."""

    def __init__(self, step: str, dependency: str) -> None:
        super().__init__(f"Step '{step}' depends on unknown step '{dependency}'")
        self.step = step
        self.dependency = dependency


class CycleDetectedError(DefinitionError):
    """The dependency graph is not a DAG."""

    def __init__(self, steps: list[str]) -> None:
        super().__init__(f"Dependency cycle detected among steps: {', '.join(steps)}")
        self.steps = steps


# ---------------------------------------------------------------------------
# Execution errors
# ---------------------------------------------------------------------------


class ExecutionError(ProvisionError):
    """A step attempt failed."""

    kind: ErrorKind = ErrorKind.FATAL

    def __init__(self, message: str, result: CommandResult | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.result = result


class TransientExecutionError(ExecutionError):
    """Failure expected to clear on its own (network blip, service not ready)."""

    kind = ErrorKind.TRANSIENT


class FatalExecutionError(ExecutionError):
    """Failure that retrying will not fix (bad credentials, missing prerequisite)."""

    kind = ErrorKind.FATAL


class CommandFailedError(FatalExecutionError):
    """A command run with check=True exited nonzero.

    The orchestrator re-classifies it through the step's retry policy, so a
    nonzero exit is not necessarily fatal.
    """

    def __init__(self, result: CommandResult) -> None:
        super().__init__(f"Command exited with {result.exit_code}: {result.command}", result)


class StepTimeoutError(ExecutionError):
    """An attempt exceeded its time budget."""

    kind = ErrorKind.TIMEOUT


class StepCancelledError(ExecutionError):
    """Operator interrupted the run."""

    kind = ErrorKind.CANCELLED


# ---------------------------------------------------------------------------
# Infrastructure errors
# ---------------------------------------------------------------------------


class InvalidCommandError(ProvisionError, ValueError):
    """Command invocation is malformed (programming error)."""


class ProgressStoreError(ProvisionError):
    """Progress store could not read or write run state."""


class RunFinalizedError(ProgressStoreError):
    """Attempt to modify a run that is already completed or aborted."""


class RunAlreadyInProgressError(ProvisionError):
    """Another process is executing the same run."""


class CredentialsError(ProvisionError):
    """Required credentials are missing or invalid."""


class UnsupportedPlatformError(ProvisionError):
    """Host platform cannot be mapped to a platform profile."""
