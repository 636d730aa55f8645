"""Pydantic data models for provision runs.

This package defines the data structures used throughout provision for:
- Step outcomes and error summaries (StepOutcome, ErrorInfo)
- Runs and their overall state (Run, RunState)
- External command results (CommandResult)
- Run locks (Lock)
- Host facts and platform profiles (EnvironmentFacts, PlatformProfile)

Example:
    >>> from provision.models import Run, StepOutcome
    >>> run = Run(run_id="20260104-120000-linux", outcomes=[StepOutcome(step="a")])
    >>> run.model_dump_json()
"""

from .command import CommandResult
from .facts import EnvironmentFacts, PlatformFamily, PlatformProfile
from .lock import Lock
from .outcome import ErrorInfo, ErrorKind, SkipReason, StepOutcome, StepState
from .run import Run, RunState

__all__ = [
    "CommandResult",
    "EnvironmentFacts",
    "ErrorInfo",
    "ErrorKind",
    "Lock",
    "PlatformFamily",
    "PlatformProfile",
    "Run",
    "RunState",
    "SkipReason",
    "StepOutcome",
    "StepState",
]
