"""Execution context handed to step checks and actions."""

import time
from collections.abc import Mapping, Sequence
from pathlib import Path

from ..errors import CommandFailedError, StepCancelledError, StepTimeoutError
from ..logging import StepLogger
from ..models import CommandResult
from ..services.runner import CancelToken, CommandRunner


class StepContext:
    """Per-attempt view of the engine for one step.

    Commands issued through ``run`` share the attempt's time budget: each
    command's timeout is clipped to what is left, and once the budget is
    spent further commands raise StepTimeoutError.

    Attributes:
        step: Name of the step being evaluated.
        attempt: Current attempt number (0 while running the idempotency check).
        runner: Command runner.
        log: Logger bound to the step name.
        cancel: Cancellation token for the run.
        deadline: Monotonic deadline for the attempt, or None.
    """

    def __init__(
        self,
        step: str,
        runner: CommandRunner,
        log: StepLogger,
        cancel: CancelToken,
        attempt: int = 0,
        timeout: float | None = None,
    ) -> None:
        self.step = step
        self.runner = runner
        self.log = log
        self.cancel = cancel
        self.attempt = attempt
        self.deadline = time.monotonic() + timeout if timeout is not None else None

    def remaining(self) -> float | None:
        """Seconds left in the attempt budget, or None if unbounded."""
        if self.deadline is None:
            return None
        return self.deadline - time.monotonic()

    def run(
        self,
        command: str | Sequence[str],
        args: Sequence[str] = (),
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
        cwd: Path | None = None,
        input: str | None = None,
        check: bool = False,
    ) -> CommandResult:
        """Run a command within the attempt budget.

        Args:
            command: Executable or full argv
            args: Extra arguments
            env: Extra environment variables (never logged)
            timeout: Per-command timeout, clipped to the remaining budget
            cwd: Working directory
            input: Text for the child's stdin
            check: Raise CommandFailedError on a failed result

        Returns:
            The command result

        Raises:
            StepCancelledError: If the run was cancelled
            StepTimeoutError: If the attempt budget is exhausted
            CommandFailedError: If ``check`` is set and the command failed
        """
        if self.cancel.cancelled:
            raise StepCancelledError("Cancelled before command started")
        remaining = self.remaining()
        if remaining is not None:
            if remaining <= 0:
                raise StepTimeoutError(f"Step '{self.step}' exceeded its time budget")
            timeout = remaining if timeout is None else min(timeout, remaining)

        result = self.runner.run(
            command,
            args,
            env=env,
            timeout=timeout,
            cwd=cwd,
            input=input,
            cancel=self.cancel,
            label=self.step,
        )
        if check and not result.ok:
            raise CommandFailedError(result)
        return result

    def succeeds(
        self,
        command: str | Sequence[str],
        args: Sequence[str] = (),
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> bool:
        """Run a probe command and report whether it exited 0."""
        return self.run(command, args, env=env, timeout=timeout).ok
